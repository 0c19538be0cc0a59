from cpybind.cli import main

raise SystemExit(main())
