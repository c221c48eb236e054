from __future__ import annotations

import errno
import os
import shutil

from .errors import BadRequest, FileExists, InvalidPath, NotFound, from_os_error
from .metadata import FileDescriptor, describe
from .paths import PathResolver, join_logical, split_logical
from .logutil import get_logger

logger = get_logger("mutations")


def _check_base_name(new_name: str) -> str:
	name = (new_name or "").strip()
	if not name:
		raise BadRequest("New name is required")
	if "/" in name or "\\" in name:
		raise BadRequest(f"New name must not contain path separators: {name}")
	if name in (".", ".."):
		raise InvalidPath(name, "Invalid name")
	return name


def _within(child_rel: str, parent_rel: str) -> bool:
	return child_rel == parent_rel or child_rel.startswith(parent_rel + "/")


class MutationOps:
	"""
	rename / move / delete / mkdir inside the storage root.

	There is no locking here: each operation leans on a single filesystem
	call (rename, mkdir, rmtree) and whatever the filesystem guarantees for
	it. Races surface as NotFound or FileExists, never as raw OSError.
	"""

	def __init__(self, resolver: PathResolver):
		self.resolver = resolver

	def _existing(self, logical_path: str, action: str) -> tuple[str, str]:
		rel, target = self.resolver.resolve_pair(logical_path)
		if not rel:
			raise BadRequest(f"Cannot {action} the storage root", path="/")
		if not os.path.lexists(target):
			raise NotFound(rel)
		return rel, target

	def rename(self, logical_path: str, new_name: str) -> FileDescriptor:
		rel, src = self._existing(logical_path, "rename")
		name = _check_base_name(new_name)
		parent_rel, _ = split_logical(rel)
		dest_rel = join_logical(parent_rel, name)
		dest = self.resolver.resolve(dest_rel)
		if os.path.lexists(dest):
			raise FileExists(dest_rel)
		try:
			os.rename(src, dest)
		except OSError as e:
			raise from_os_error(e, rel, "rename") from e
		logger.info(f"rename: {rel!r} -> {dest_rel!r}")
		return describe(dest, dest_rel)

	def move(self, src_logical: str, dest_logical: str) -> FileDescriptor:
		src_rel, src = self._existing(src_logical, "move")
		dest_rel, dest = self.resolver.resolve_pair(dest_logical)
		if not dest_rel:
			raise BadRequest("Destination must name an entry below the storage root", path="/")
		if dest_rel == src_rel:
			raise BadRequest(f"Source and destination are the same: {src_rel}", path=src_rel)
		if os.path.isdir(src) and _within(dest_rel, src_rel):
			raise BadRequest(f"Cannot move a directory into itself: {src_rel}", path=dest_rel)
		if os.path.lexists(dest):
			raise FileExists(dest_rel)

		parent = os.path.dirname(dest)
		try:
			os.makedirs(parent, exist_ok=True)
		except FileExistsError:
			raise BadRequest(f"Destination parent is not a directory: {split_logical(dest_rel)[0]}", path=dest_rel)
		except OSError as e:
			raise from_os_error(e, dest_rel, "create destination directory") from e

		try:
			os.rename(src, dest)
		except OSError as e:
			if getattr(e, "errno", None) != errno.EXDEV:
				raise from_os_error(e, src_rel, "move") from e
			# Cross-device: copy then delete. Not atomic; a crash can leave both copies.
			logger.warning(f"move: {src_rel!r} crosses devices, falling back to copy+delete")
			try:
				shutil.move(src, dest)
			except OSError as e2:
				raise from_os_error(e2, src_rel, "move") from e2
		logger.info(f"move: {src_rel!r} -> {dest_rel!r}")
		return describe(dest, dest_rel)

	def delete(self, logical_path: str) -> str:
		rel, target = self._existing(logical_path, "delete")
		try:
			if os.path.isdir(target) and not os.path.islink(target):
				shutil.rmtree(target)
			else:
				os.remove(target)
		except OSError as e:
			raise from_os_error(e, rel, "delete") from e
		logger.info(f"delete: {rel!r}")
		return rel

	def mkdir(self, logical_path: str, recursive: bool = True) -> FileDescriptor:
		rel, target = self.resolver.resolve_pair(logical_path)
		if not rel or os.path.lexists(target):
			raise BadRequest(f"Path already exists: {rel or '/'}", path=rel or "/")
		try:
			if recursive:
				os.makedirs(target)
			else:
				os.mkdir(target)
		except FileExistsError:
			raise BadRequest(f"Path already exists: {rel}", path=rel)
		except FileNotFoundError:
			raise NotFound(split_logical(rel)[0] or "/", what="Parent directory")
		except OSError as e:
			raise from_os_error(e, rel, "create directory") from e
		logger.info(f"mkdir: {rel!r} (recursive={recursive})")
		return describe(target, rel)
