"""git / gh plumbing: one-shot commands, worktrees, branches and PRs."""

from manifold.git.branch_checkout import BranchCheckoutManager, BranchInfo, PRInfo, parse_pr_number
from manifold.git.branch_namer import derive_branch_name, generate_branch_name, repo_prefix, slugify
from manifold.git.exec import GitRunner, gh_exec, git_exec
from manifold.git.operations import (
    AheadBehind,
    FetchResult,
    GitOperationsManager,
    PRContext,
    StatusDetail,
    parse_ahead_behind,
    parse_status_detail,
)
from manifold.git.pr_creator import PrCreator
from manifold.git.worktree_manager import WorktreeInfo, WorktreeManager, parse_worktree_porcelain
from manifold.git.worktree_meta import (
    WorktreeMeta,
    meta_path,
    read_worktree_meta,
    remove_worktree_meta,
    write_worktree_meta,
)

__all__ = [
    "AheadBehind",
    "BranchCheckoutManager",
    "BranchInfo",
    "FetchResult",
    "GitOperationsManager",
    "GitRunner",
    "PRContext",
    "PRInfo",
    "PrCreator",
    "StatusDetail",
    "WorktreeInfo",
    "WorktreeManager",
    "WorktreeMeta",
    "derive_branch_name",
    "generate_branch_name",
    "gh_exec",
    "git_exec",
    "meta_path",
    "parse_ahead_behind",
    "parse_pr_number",
    "parse_status_detail",
    "parse_worktree_porcelain",
    "read_worktree_meta",
    "remove_worktree_meta",
    "repo_prefix",
    "slugify",
    "write_worktree_meta",
]
