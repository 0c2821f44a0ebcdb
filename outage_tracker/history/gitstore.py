"""Git binding of the RevisionStore protocol, backed by GitPython."""

import logging
import shutil
import tempfile
from datetime import datetime, timezone
from typing import Iterator, Optional

from git import Repo
from git.exc import GitError, ODBError
from git.objects import Blob as GitObjectBlob

from outage_tracker.errors import OutageTrackerError
from outage_tracker.history.source import Revision

logger = logging.getLogger(__name__)


class GitBlob:
    """A tracked file's blob at one commit."""

    def __init__(self, blob: GitObjectBlob):
        self._blob = blob

    @property
    def hexsha(self) -> str:
        return self._blob.hexsha

    def read(self) -> bytes:
        try:
            return self._blob.data_stream.read()
        except (GitError, ODBError, ValueError) as exc:
            raise OutageTrackerError(f"reading blob {self._blob.hexsha}: {exc}") from exc


class GitRevisionStore:
    """
    Revisions are commits reachable from HEAD, walked in committer-date order.
    A store created by clone() owns its temporary clone and removes it on close().
    """

    def __init__(self, repo: Repo, workdir: Optional[str] = None):
        self.repo = repo
        self._workdir = workdir

    @classmethod
    def from_path(cls, path: str) -> "GitRevisionStore":
        logger.info("history using local repository %s", path)
        try:
            return cls(Repo(path))
        except GitError as exc:
            raise OutageTrackerError(f"opening repository {path}: {exc}") from exc

    @classmethod
    def clone(cls, remote: str) -> "GitRevisionStore":
        workdir = tempfile.mkdtemp(prefix="outage-tracker-")
        logger.info("history cloning %s into %s", remote, workdir)
        try:
            repo = Repo.clone_from(remote, workdir, bare=True)
        except GitError as exc:
            shutil.rmtree(workdir, ignore_errors=True)
            raise OutageTrackerError(f"cloning {remote}: {exc}") from exc
        return cls(repo, workdir=workdir)

    def log(self, not_before: Optional[datetime] = None) -> Iterator[Revision]:
        options = {"date_order": True}
        if not_before is not None:
            options["max_age"] = int(not_before.timestamp())
        try:
            for commit in self.repo.iter_commits(self.repo.head.commit, **options):
                yield Revision(
                    id=commit.hexsha,
                    committed_at=commit.committed_datetime.astimezone(timezone.utc),
                )
        except (GitError, ODBError, ValueError) as exc:
            raise OutageTrackerError(f"walking history: {exc}") from exc

    def blob(self, revision: Revision, path: str) -> Optional[GitBlob]:
        try:
            tree = self.repo.commit(revision.id).tree
        except (GitError, ODBError, ValueError) as exc:
            raise OutageTrackerError(f"reading revision {revision.id}: {exc}") from exc
        try:
            item = tree / path
        except KeyError:
            return None
        if not isinstance(item, GitObjectBlob):
            return None
        return GitBlob(item)

    def close(self) -> None:
        self.repo.close()
        if self._workdir:
            shutil.rmtree(self._workdir, ignore_errors=True)
            self._workdir = None
