#!/usr/bin/env python3
"""
ReAuth - Main Entry Point
Log into Microsoft / legacy accounts and swap the session without restarting
"""
import argparse
import getpass
import logging
import sys
from concurrent.futures import CancelledError
from pathlib import Path

from auth import CredentialStore, ProfileManager
from auth.session_helper import SessionHelper
from console import ConsoleProgress
from flows import FlowFailedError, get_default_executor

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='ReAuth session login')
    parser.add_argument('--debug', action='store_true', help='Enable debug-level logging')
    commands = parser.add_subparsers(dest='command', required=True)

    browser = commands.add_parser('browser', help='Microsoft login in the browser')
    browser.add_argument('--no-open', action='store_true', help='Only print the login URL')
    commands.add_parser('device', help='Microsoft login with a device code')

    password = commands.add_parser('password', help='Legacy username/password login')
    password.add_argument('login', help='Email or legacy username')
    password.add_argument('--save-password', action='store_true', help='Store the password in the keyring')

    offline = commands.add_parser('offline', help='Use an offline username')
    offline.add_argument('username')

    refresh = commands.add_parser('refresh', help='Log back into a saved profile')
    refresh.add_argument('uuid', help='Profile uuid (see "profiles")')

    commands.add_parser('profiles', help='List saved profiles')
    return parser


def setup_logging(debug: bool) -> Path:
    """Always log to file, optionally verbose"""
    log_dir = Path.home() / ".reauth"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "reauth.log"

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file, encoding='utf-8'),
            logging.StreamHandler(),
        ]
    )
    return log_file


def run_flow(helper: SessionHelper, args) -> int:
    progress = ConsoleProgress(open_browser=not getattr(args, 'no_open', False))

    if args.command == 'browser':
        flow = helper.authorization_code_flow(progress)
    elif args.command == 'device':
        flow = helper.device_code_flow(progress)
    elif args.command == 'refresh':
        profile = helper.profile_manager.get_profile(args.uuid)
        if profile is None:
            print(f"No saved profile {args.uuid}")
            return 1
        flow = helper.refresh_flow(profile, progress)
    else:
        password = getpass.getpass("Password: ")
        flow = helper.password_flow(args.login, password, args.save_password, progress)

    progress.set_flow(flow)
    flow.start()
    try:
        session = flow.get_session().result()
    except KeyboardInterrupt:
        flow.cancel()
        progress.done.wait(timeout=5)
        return 130
    except (FlowFailedError, CancelledError):
        progress.done.wait(timeout=5)
        return 1

    progress.done.wait(timeout=5)
    print(f"Logged in as {session.username} ({session.user_id})")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    log_file = setup_logging(args.debug)
    logger.info(f"Log file: {log_file}")

    executor = get_default_executor()
    helper = SessionHelper(CredentialStore(), executor, profile_manager=ProfileManager())
    try:
        if args.command == 'offline':
            if not helper.is_valid_name(args.username):
                print("Names are 2-16 letters, digits or underscores")
                return 1
            session = helper.offline(args.username)
            print(f"Offline as {session.username} ({session.user_id})")
            return 0

        if args.command == 'profiles':
            profiles = helper.profile_manager.list_profiles()
            if not profiles:
                print("No saved profiles")
            for profile in profiles:
                print(f"{profile.uuid}  {profile.username}")
            return 0

        return run_flow(helper, args)
    except Exception as e:
        logger.error(f"Application error: {str(e)}", exc_info=True)
        print(f"Error: {e}\nSee log file for details: {log_file}")
        return 1
    finally:
        executor.shutdown(wait=False)


if __name__ == "__main__":
    sys.exit(main())
