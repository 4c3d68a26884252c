import argparse
import logging
import sys
import webbrowser

from qrauth.client.poller import ERROR_MESSAGE, QRLoginPoller
from qrauth.client.storage import DEFAULT_CACHE_PATH, CookieSync, LocalSessionCache, SessionPersistence
from qrauth.core.errors import NetworkError
from qrauth.models import SessionStatus
from qrauth.services.qr_service import QRService


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Log in by scanning a QR code with the mobile app")
    parser.add_argument("--server", default="http://localhost:8000", help="Identity server base URL")
    parser.add_argument("--web", default=None, help="Same-origin web app URL for the cookie (defaults to --server)")
    parser.add_argument("--app", default="Tana", help="Application name shown on the phone")
    parser.add_argument("--return-url", default=None, help="Where to go after login")
    parser.add_argument("--cache", default=str(DEFAULT_CACHE_PATH), help="Local session cache file")
    parser.add_argument("--interval", type=float, default=1.0)
    parser.add_argument("--open", action="store_true", help="Open the return URL in a browser on success")
    parser.add_argument("--logout", action="store_true", help="Clear the stored session and exit")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.WARNING)

    web_url = args.web or args.server
    return_url = args.return_url or f"{web_url.rstrip('/')}/dashboard"
    persistence = SessionPersistence(LocalSessionCache(args.cache), CookieSync(web_url))

    if args.logout:
        try:
            persistence.clear()
        except NetworkError:
            print(ERROR_MESSAGE)
            return 1
        print("Signed out.")
        return 0

    def on_status(status: SessionStatus, message: str) -> None:
        print(message)

    def on_redirect(url: str) -> None:
        if args.open:
            webbrowser.open(url)
        else:
            print(f"Continue at {url}")

    poller = QRLoginPoller(
        args.server,
        persistence,
        interval=args.interval,
        on_status=on_status,
        on_redirect=on_redirect,
    )

    while True:
        try:
            flow = poller.start(args.app, return_url) if poller.flow is None else poller.retry()
        except NetworkError:
            print(ERROR_MESSAGE)
            return 1

        QRService.render_terminal(flow.qr_data, out=sys.stdout)
        print(flow.message)
        try:
            status = flow.wait()
        except KeyboardInterrupt:
            poller.cancel()
            return 130

        if status is SessionStatus.APPROVED:
            return 0
        answer = input("Generate a new code? [y/N] ").strip().lower()
        if answer != "y":
            return 1


if __name__ == "__main__":
    sys.exit(main())
