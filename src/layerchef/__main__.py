from layerchef.cli import main

raise SystemExit(main())
