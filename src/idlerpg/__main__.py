from pathlib import Path
import sys

from dotenv import load_dotenv

# Ensure the src directory is on sys.path when running as a script
_SRC_DIR = Path(__file__).resolve().parents[1]
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from idlerpg.bootstrap import EngineSettings, configure_logging, create_activity_engine
from idlerpg.presentation.cli import main as cli_main

load_dotenv()


def _print_help_surface() -> None:
    print("\nHelp:")
    print("- Run without arguments for the interactive shell, or pass one command (e.g. 'zones').")
    print("- Startup issues: verify RPG_DATABASE_URL or unset it to use in-memory mode.")


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    try:
        settings = EngineSettings.from_env()
        configure_logging(settings)
        engine = create_activity_engine(settings)
        return cli_main(engine, args)
    except KeyboardInterrupt:
        print("\nSession ended.")
        return 0
    except Exception as exc:
        print("An unexpected error occurred. The engine closed safely.")
        print(f"Reason: {exc}")
        _print_help_surface()
        return 1


if __name__ == "__main__":
    sys.exit(main())
