"""Entry point for `python -m taskpilot.cli` invocation."""


def main():
    """Run the CLI with proper program name."""
    from taskpilot.cli.app import app

    app(prog_name="taskpilot")


if __name__ == "__main__":
    main()
