import argparse
import logging
import sys
from salah.core.app import SalahApp
from salah.core.errors import SalahError

def setup_basic_logging():
    """Setup basic stdout logging before config is loaded"""
    root_logger = logging.getLogger()
    if not root_logger.handlers:  # Only add handler if none exists
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        ))
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.DEBUG)  # Set initial level to DEBUG
        logging.debug("Basic logging initialized")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Salah prayer times and reminders')
    parser.add_argument('--config',
                        help='Path to config file (default: ~/.salah/config.yaml)')
    group = parser.add_mutually_exclusive_group()
    group.add_argument('--export', metavar='FILE',
                       help='Write a JSON backup of prayer progress to FILE and exit')
    group.add_argument('--restore', metavar='FILE',
                       help='Merge a JSON backup from FILE into prayer progress and exit')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    setup_basic_logging()
    args = parse_args(argv)

    if args.export or args.restore:
        app = SalahApp(config_path=args.config, watch_config=False)
        try:
            if args.export:
                app.export_backup(args.export)
            else:
                count = app.restore_backup(args.restore)
                logging.info(f"Prayer progress now holds {count} records")
        except (OSError, ValueError, SalahError) as e:
            logging.error(f"Backup operation failed: {e}")
            return 1
        finally:
            app.shutdown()
        return 0

    # Create and run app
    app = SalahApp(config_path=args.config)
    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
