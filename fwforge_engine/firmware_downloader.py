import hashlib
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import git  # GitPython

from .errors import FirmwareDownloadError, GitExecutableNotFoundError
from .logger_setup import logger
from .models import PullRequest


@dataclass
class GitCheckoutResult:
    path: Path  # firmware source directory inside the checkout
    commit: str


def find_git_executable(path_env: Optional[str] = None) -> Path:
    """Looks git up on the given search path (defaults to this process' PATH)."""
    search_path = path_env if path_env is not None else os.environ.get("PATH", "")
    git_path = shutil.which("git", path=search_path)
    if not git_path:
        raise GitExecutableNotFoundError(search_path)
    return Path(git_path)


class GitFirmwareDownloader:
    """Keeps one clone per repository under base_directory and checks refs out of it.

    Every checkout forces the working tree onto the requested ref and drops
    untracked files, so consecutive checkouts of different refs never leak
    state into each other. Ignored files (build output) survive.
    """

    def __init__(self, base_directory: Path, git_binary_location: Optional[Path] = None):
        self.base_directory = Path(base_directory)
        self.base_directory.mkdir(parents=True, exist_ok=True)
        if git_binary_location:
            git.refresh(str(git_binary_location))

    def repository_directory(self, repository_url: str) -> Path:
        digest = hashlib.sha1(repository_url.encode("utf-8")).hexdigest()[:16]
        return self.base_directory / digest

    def checkout_ref(self, repository_url: str, ref: str, src_folder: str = "") -> GitCheckoutResult:
        """Checks out a commit hash, branch name or tag name."""
        if not ref:
            raise FirmwareDownloadError("cannot checkout an empty git ref", repository_url, ref)
        repo = self._ensure_repository(repository_url)
        target = self._resolve_checkout_target(repo, ref)
        return self._checkout(repo, repository_url, target, src_folder)

    def checkout_pull_request(self, repository_url: str, pull_request: PullRequest,
                              src_folder: str = "") -> GitCheckoutResult:
        if not pull_request.head_commit_hash:
            raise FirmwareDownloadError(
                f"pull request #{pull_request.number} has no head commit", repository_url
            )
        repo = self._ensure_repository(repository_url)
        refspec = f"+refs/pull/{pull_request.number}/head:refs/remotes/origin/pr/{pull_request.number}"
        try:
            repo.remotes.origin.fetch(refspec)
        except git.exc.GitCommandError as e:
            # The head commit may still be reachable from an already fetched branch
            logger.warning(f"Could not fetch pull request #{pull_request.number} from {repository_url}: {e}")
        return self._checkout(repo, repository_url, pull_request.head_commit_hash, src_folder)

    def _ensure_repository(self, repository_url: str) -> git.Repo:
        repo_dir = self.repository_directory(repository_url)
        try:
            if repo_dir.exists() and any(repo_dir.iterdir()):
                try:
                    repo = git.Repo(repo_dir)
                except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
                    logger.warning(f"{repo_dir} is not a valid git repository. Removing it and cloning again.")
                    shutil.rmtree(repo_dir)
                    return self._clone(repository_url, repo_dir)
                logger.info(f"Fetching updates for {repository_url} in {repo_dir}...")
                repo.remotes.origin.fetch(tags=True, prune=True, force=True)
                return repo
            return self._clone(repository_url, repo_dir)
        except git.exc.GitCommandError as e:
            logger.error(f"Git command error for {repository_url} in {repo_dir}: {e}")
            raise FirmwareDownloadError(f"failed to download {repository_url}: {e}", repository_url) from e

    def _clone(self, repository_url: str, repo_dir: Path) -> git.Repo:
        logger.info(f"Cloning {repository_url} into {repo_dir}...")
        repo_dir.mkdir(parents=True, exist_ok=True)
        repo = git.Repo.clone_from(repository_url, repo_dir)
        logger.info("Clone complete.")
        return repo

    def _resolve_checkout_target(self, repo: git.Repo, ref: str) -> str:
        # Branches are taken from the freshly fetched remote, not from a stale local branch
        for remote_ref in repo.remotes.origin.refs:
            if remote_ref.remote_head == ref:
                return f"origin/{ref}"
        return ref

    def _checkout(self, repo: git.Repo, repository_url: str, target: str, src_folder: str) -> GitCheckoutResult:
        try:
            logger.info(f"Checking out {target} from {repository_url}...")
            repo.git.checkout("--force", "--detach", target)
            repo.git.reset("--hard")
            repo.git.clean("-fd")
            commit = repo.head.commit.hexsha
        except git.exc.GitCommandError as e:
            logger.error(f"Failed to checkout {target} from {repository_url}: {e}")
            raise FirmwareDownloadError(f"failed to checkout {target}: {e}", repository_url, target) from e

        repo_root = Path(repo.working_tree_dir)
        firmware_path = repo_root / src_folder if src_folder else repo_root
        logger.info(f"Checked out {target} at commit {commit}")
        return GitCheckoutResult(path=firmware_path.resolve(), commit=commit)
