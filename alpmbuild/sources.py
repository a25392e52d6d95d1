"""Source acquisition with digest and signature verification."""

import hashlib
import logging
import shutil
import subprocess
from pathlib import Path, PurePosixPath
from typing import Callable
from urllib.parse import urlparse

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from alpmbuild.context import BuildContext
from alpmbuild.errors import BuildEnvironmentError, VerificationError
from alpmbuild.models import PackageDefinition, SourceEntry
from alpmbuild.utils import is_url

logger = logging.getLogger(__name__)


def ask(question: str) -> bool:
    """Ask a yes/no question on the terminal, defaulting to yes."""
    try:
        answer = input(f"  -> {question} [Y/n] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("", "y", "yes")


def file_digest(path: Path, algorithm: str) -> str:
    """Calculate the hex digest of a file.

    Args:
        path: Path to the file
        algorithm: hashlib algorithm name (md5, sha1, sha224, sha256, sha384, sha512)

    Returns:
        Hex digest as a lowercase string
    """
    digest = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


class SourceFetcher:
    """Places every declared source and patch into the source directory."""

    def __init__(self, context: BuildContext, confirm: Callable[[str], bool] | None = None):
        """Initialize the source fetcher.

        Args:
            context: Build context providing the working area and settings
            confirm: Yes/no prompt used before importing GPG keys
        """
        self.area = context.area
        self.settings = context.settings
        self.recipe_dir = context.recipe_dir
        self.confirm = confirm or ask
        self.session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry configuration.

        Returns:
            Configured requests session with exponential backoff retry
        """
        session = requests.Session()

        retry_strategy = Retry(
            total=self.settings.download_retries,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def fetch_all(self, package: PackageDefinition) -> list[Path]:
        """Resolve and verify every source and patch of ``package``.

        Returns:
            Paths of the sources and patches inside the source directory

        Raises:
            BuildEnvironmentError: If a source cannot be downloaded or copied
            VerificationError: If a digest or signature does not match
        """
        entries = package.sources + package.patches
        if entries:
            logger.info(f"Fetching {len(entries)} source(s)...")

        paths = []
        for entry in entries:
            path = self.resolve(entry)
            self.verify_digests(entry, path)
            if entry.signature_url:
                self.verify_signature(entry, path)
            paths.append(path)
        return paths

    def resolve(self, entry: SourceEntry) -> Path:
        """Download or copy ``entry`` into the source directory.

        Returns:
            Path of the file inside the source directory
        """
        target = self.area.sources / entry.filename
        self.area.sources.mkdir(parents=True, exist_ok=True)

        if is_url(entry.url):
            name = PurePosixPath(urlparse(entry.url).path).name or entry.filename
            origin = self.download(entry.url, self.area.downloads / name)
        else:
            origin = self.local_path(entry)
            logger.info(f"Copying {origin.name}...")

        if origin != target:
            try:
                shutil.copyfile(origin, target)
            except OSError as e:
                raise BuildEnvironmentError(f"Failed to copy {origin} to {target}: {e}") from e
        return target

    def local_path(self, entry: SourceEntry) -> Path:
        """Locate a non-URL source relative to the recipe directory."""
        path = Path(entry.url)
        if not path.is_absolute():
            path = self.recipe_dir / path
        if not path.is_file():
            raise BuildEnvironmentError(f"Source {entry.url} does not exist at {path}")
        return path

    def download(self, url: str, target: Path) -> Path:
        """Download a single file.

        Args:
            url: URL to download from
            target: Where to store the file

        Returns:
            Path to the downloaded file

        Raises:
            BuildEnvironmentError: If the download fails after all retries
        """
        target.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"Downloading {target.name} from {url}")

        try:
            response = self.session.get(url, timeout=self.settings.download_timeout, stream=True)
            response.raise_for_status()

            with open(target, "wb") as f:
                for chunk in response.iter_content(chunk_size=65536):
                    if chunk:
                        f.write(chunk)

        except (requests.RequestException, OSError) as e:
            if target.exists():
                target.unlink()
            raise BuildEnvironmentError(f"Failed to download {target.name} from {url}: {e}") from e

        logger.debug(f"Downloaded {target.name} ({target.stat().st_size} bytes)")
        return target

    def verify_digests(self, entry: SourceEntry, path: Path) -> None:
        """Check every digest declared for ``entry``.

        Raises:
            VerificationError: On the first mismatching digest
        """
        for algorithm, expected in entry.digests.items():
            actual = file_digest(path, algorithm)
            if actual != expected:
                raise VerificationError(
                    f"{algorithm} mismatch for {entry.filename}: expected {expected}, got {actual}"
                )
            logger.debug(f"{algorithm} of {entry.filename} verified")

    def verify_signature(self, entry: SourceEntry, path: Path) -> None:
        """Fetch the detached signature of ``entry`` and verify it with gpg.

        Raises:
            VerificationError: If gpg reports a bad or unverifiable signature
        """
        signature = self.resolve(SourceEntry(url=entry.signature_url))
        for key in entry.gpg_keys:
            self.ensure_key(key, entry.keyservers)

        logger.info(f"Verifying signature of {entry.filename}...")
        command = [self.settings.gpg, "--verify", str(signature), str(path)]
        result = self._run(command)
        if result.returncode != 0:
            raise VerificationError(
                f"Signature verification of {entry.filename} failed:\n{result.stderr.strip()}"
            )

    def ensure_key(self, key: str, keyservers: list[str]) -> None:
        """Import ``key`` from the first keyserver that has it, unless already present."""
        if self._run([self.settings.gpg, "--list-keys", key]).returncode == 0:
            return
        if not keyservers:
            logger.warning(f"GPG key {key} is not in the local keyring and no keyserver was given")
            return

        for server in keyservers:
            if not (self.settings.auto_import_keys or self.confirm(f"Import GPG key {key} from {server}?")):
                continue
            result = self._run([self.settings.gpg, "--keyserver", server, "--recv-keys", key])
            if result.returncode == 0:
                logger.info(f"Imported GPG key {key} from {server}")
                return
            logger.warning(f"Could not import GPG key {key} from {server}")

    def _run(self, command: list[str]) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(command, capture_output=True, text=True, check=False)
        except OSError as e:
            raise BuildEnvironmentError(f"Could not run {command[0]}: {e}") from e
