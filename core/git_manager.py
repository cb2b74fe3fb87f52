# core/git_manager.py
import os
from typing import Mapping, Optional

import git

from core.image import SHORT_SHA_LENGTH, build_tag

# CI systems check out a detached HEAD and name the branch in the environment
BRANCH_ENV_VARS = ("GIT_BRANCH", "GITHUB_REF_NAME", "CI_COMMIT_REF_NAME")


class GitManager:
    def __init__(self, path: str = ".", env: Optional[Mapping[str, str]] = None):
        self.path = str(path)
        self.env = os.environ if env is None else env
        self._repo = None

    @property
    def repo(self) -> git.Repo:
        if self._repo is None:
            self._repo = git.Repo(self.path, search_parent_directories=True)
        return self._repo

    def current_branch(self) -> str:
        try:
            return self.repo.active_branch.name
        except TypeError:
            # detached HEAD
            for var in BRANCH_ENV_VARS:
                if self.env.get(var):
                    return self.env[var]
            return "detached"

    def commit_hash(self, short: bool = False) -> str:
        hexsha = self.repo.head.commit.hexsha
        return hexsha[:SHORT_SHA_LENGTH] if short else hexsha

    def image_tag(self) -> str:
        """``<branch>-<short-commit-hash>`` for the checked-out commit."""
        return build_tag(self.current_branch(), self.commit_hash())
