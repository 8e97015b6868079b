#!/usr/bin/env python

# e2e_tests/main.py

import argparse

from components.config import load_configuration
from components.pre_flight import verify_connectivity
from components.runner import SmokeTestRunner


def main():
    """Main entry point for the smoke runner script."""
    parser = argparse.ArgumentParser(
        description="End-to-end smoke test for a deployed edge dispatcher.",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("-c", "--config", help="Path to a JSON configuration file.")
    parser.add_argument("--bucket", help="The asset bucket the dispatcher proxies to.")
    parser.add_argument("--function-url", help="Base URL of the deployed Function URL.")
    parser.add_argument(
        "--asset-prefix", help="Key prefix of the built assets (default: 'build')."
    )
    parser.add_argument("--aws-region", help="Region of the asset bucket.")
    parser.add_argument(
        "--keep-files",
        action="store_true",
        default=None,
        help="Leave the seeded asset in the bucket after the run.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=None,
        help="Enable verbose output, including full exception tracebacks.",
    )

    args = parser.parse_args()

    # 1. Load the configuration object first.
    config = load_configuration(args)

    # 2. Run the pre-flight check. This function will exit the script on failure.
    verify_connectivity(config)

    # 3. If the check passes, we can safely create and run the runner.
    try:
        runner = SmokeTestRunner(config)
        exit(runner.run())
    except Exception as e:
        print(f"\nAn unexpected error occurred during the smoke run: {e}")
        if config.verbose:
            import traceback
            traceback.print_exc()
        exit(1)


if __name__ == "__main__":
    main()
