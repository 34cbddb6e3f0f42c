from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from .backup.archiver import BackupArchiver
from .common.audit import AuditRecorder, DatabaseAuditRecorder
from .files.contracts import ContractUniquenessGuard
from .files.lifecycle import LifecycleManager
from .files.versions import FileVersionChain
from .folders.tree import FolderTree


EXTENSION_KEY = "vault"


@dataclass
class Services:
    audit: AuditRecorder
    lifecycle: LifecycleManager
    contracts: ContractUniquenessGuard
    versions: FileVersionChain
    folders: FolderTree
    backups: BackupArchiver


def build_services(audit: AuditRecorder | None = None) -> Services:
    recorder = audit if audit is not None else DatabaseAuditRecorder()
    lifecycle = LifecycleManager(recorder)
    contracts = ContractUniquenessGuard()
    folders = FolderTree(lifecycle, recorder)
    return Services(
        audit=recorder,
        lifecycle=lifecycle,
        contracts=contracts,
        versions=FileVersionChain(contracts, lifecycle, recorder),
        folders=folders,
        backups=BackupArchiver(folders, recorder),
    )


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]
