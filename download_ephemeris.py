"""Download Swiss Ephemeris data files, trying each mirror in turn."""

import argparse
import sys
from contextlib import closing
from pathlib import Path
from typing import Iterable, Optional, Sequence

import requests
import structlog

from ephemeris import REQUIRED_FILES

log = structlog.get_logger(__name__)

DEFAULT_MIRRORS = (
    "https://www.astro.com/ftp/swisseph/ephe",
    "https://raw.githubusercontent.com/aloistr/swisseph/master/ephe",
)
CHUNK_SIZE = 64 * 1024
TIMEOUT = 60


class DownloadError(RuntimeError):
    """Raised when a file could not be fetched from any mirror."""


def _download(url: str, destination: Path, timeout: int = TIMEOUT) -> None:
    try:
        response = requests.get(url, stream=True, timeout=timeout)
    except requests.RequestException as exc:
        raise DownloadError(f"Failed to start download: {exc}") from exc

    with closing(response) as resp:
        try:
            resp.raise_for_status()
        except requests.HTTPError as exc:
            raise DownloadError(f"Download failed with status {resp.status_code}.") from exc

        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = destination.with_suffix(destination.suffix + ".part")
        try:
            with tmp_path.open("wb") as fh:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        fh.write(chunk)
        except requests.RequestException as exc:
            tmp_path.unlink(missing_ok=True)
            raise DownloadError(f"Download interrupted: {exc}") from exc
        tmp_path.replace(destination)


def fetch_file(filename: str, target_dir: Path, mirrors: Sequence[str] = DEFAULT_MIRRORS,
               timeout: int = TIMEOUT) -> Path:
    """Fetch ``filename`` from the first mirror that serves it."""
    destination = Path(target_dir) / filename
    errors = []
    for base in mirrors:
        url = f"{base.rstrip('/')}/{filename}"
        try:
            _download(url, destination, timeout=timeout)
        except DownloadError as exc:
            log.warning("ephemeris_download_failed", url=url, error=str(exc))
            errors.append(f"{url}: {exc}")
            continue
        log.info("ephemeris_downloaded", url=url, destination=str(destination))
        return destination
    raise DownloadError(f"Could not fetch {filename} from any mirror; " + "; ".join(errors))


def ensure_ephemeris_files(target_dir, mirrors: Sequence[str] = DEFAULT_MIRRORS,
                           files: Iterable[str] = REQUIRED_FILES, timeout: int = TIMEOUT) -> bool:
    """
    Make sure every ephemeris file exists in ``target_dir``.

    Returns False when at least one file is still missing; the caller is then
    expected to run on the built-in Moshier ephemeris.
    """
    target_dir = Path(target_dir).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    complete = True
    for filename in files:
        if (target_dir / filename).is_file():
            continue
        try:
            fetch_file(filename, target_dir, mirrors, timeout=timeout)
        except DownloadError as exc:
            log.warning("ephemeris_file_unavailable", filename=filename, error=str(exc))
            complete = False
    return complete


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="birthchart-ephe",
        description="Download the Swiss Ephemeris data files used for chart calculations.",
    )
    parser.add_argument("--target", default="ephe", help="Directory for the .se1 files. [default: %(default)s]")
    parser.add_argument(
        "--mirror",
        action="append",
        dest="mirrors",
        help="Base URL to try, in order. May be repeated. Defaults to astro.com then GitHub.",
    )
    parser.add_argument("--timeout", type=int, default=TIMEOUT, help="HTTP timeout in seconds. [default: %(default)s]")
    return parser


def main(argv: Optional[Iterable[str]] = None) -> int:
    from logconfig import setup_logging

    setup_logging()
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    mirrors = args.mirrors or DEFAULT_MIRRORS
    if ensure_ephemeris_files(args.target, mirrors, timeout=args.timeout):
        print(f"All Swiss Ephemeris files present in {args.target}")
        return 0
    print("Some ephemeris files could not be downloaded; charts will use the Moshier ephemeris.", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
