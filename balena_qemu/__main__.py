"""Module entrypoint: python -m balena_qemu."""

from balena_qemu.cli import main

raise SystemExit(main())
