"""Static asset stage serving files from the public directory.

Only ``GET``/``HEAD`` requests outside the API prefix are looked up. When no
file matches, the request simply continues down the pipeline; producing the
404 is left to the not-found route.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

from starlette.concurrency import run_in_threadpool
from starlette.staticfiles import StaticFiles

from natours.core.pipeline import CONTINUE, RequestContext, Respond, StageResult, path_in_scope

logger = logging.getLogger(__name__)


class StaticFilesStage:
    name = "static_files"

    def __init__(self, directory: str | Path, *, api_prefix: str = "/api") -> None:
        self.directory = Path(directory)
        self.api_prefix = api_prefix
        self._files = StaticFiles(directory=self.directory, check_dir=False)

    def _resolve(self, path: str) -> tuple[str, os.stat_result | None]:
        if not self.directory.is_dir():
            return "", None
        full_path, stat_result = self._files.lookup_path(path)
        if stat_result is not None and stat.S_ISDIR(stat_result.st_mode):
            full_path, stat_result = self._files.lookup_path(os.path.join(path, "index.html"))
        if stat_result is None or not stat.S_ISREG(stat_result.st_mode):
            return "", None
        return full_path, stat_result

    async def __call__(self, ctx: RequestContext) -> StageResult:
        if ctx.method not in ("GET", "HEAD") or path_in_scope(ctx.path, self.api_prefix):
            return CONTINUE

        path = self._files.get_path(ctx.scope)
        try:
            full_path, stat_result = await run_in_threadpool(self._resolve, path)
        except OSError as exc:
            logger.debug("static_files.lookup_failed", extra={"path": ctx.path, "error": str(exc)})
            return CONTINUE

        if stat_result is None:
            return CONTINUE
        return Respond(self._files.file_response(full_path, stat_result, ctx.scope))
