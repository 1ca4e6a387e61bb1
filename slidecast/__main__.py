"""Package entry point for ``python -m slidecast request.json``."""

if __name__ == "__main__":
    from slidecast.cli import main
    main()
