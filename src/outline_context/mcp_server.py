# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""MCP Server Protocol Layer for the outline context cache.

This module implements the MCP protocol layer with ZERO business logic.
All cache logic is delegated to OutlineContextService.
"""

import argparse
import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.session import ServerSession

from outline_context.config import Config, ConfigurationError
from outline_context.hooks import ContextRequest, apply_transforms
from outline_context.log_config import (
    ensure_log_directories,
    get_default_data_root,
    get_logs_dir,
)
from outline_context.logging_setup import setup_logging
from outline_context.models import Variant
from outline_context.service import OutlineContextService, SectionTarget

logger = logging.getLogger(__name__)


class OutlineContextMCPServer:
    """MCP Protocol Layer for the outline context cache.

    Responsibilities:
    - Initialize MCP server and register tools
    - Translate tool arguments into SectionTargets and service calls
    - Format service results as MCP tool results
    - Handle MCP server lifecycle (startup, shutdown)

    Design Constraint: This layer contains ZERO business logic.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        service: Optional[OutlineContextService] = None,
        data_root: Optional[Path] = None,
        session_id: Optional[str] = None,
    ):
        """Initialize MCP server.

        Args:
            config: Configuration object. If None, loads from default location.
            service: Service layer instance. If None, creates default service.
            data_root: Root directory for log files. If None, uses ~/.outline_context/
            session_id: Session ID for log filenames. If None, generates a UUID.
        """
        if config is None:
            config = Config()
        self.config = config

        self.data_root = data_root or get_default_data_root()
        self.session_id = session_id or str(uuid.uuid4())

        ensure_log_directories(self.data_root)

        if service is None:
            service = OutlineContextService(
                config=config,
                session_id=self.session_id,
                data_root=self.data_root,
            )
        self.service = service

        if config.enable_context_injection:
            self.service.enable_injection()

        self.mcp = FastMCP(name="outline-context-cache")

        self._register_tools()

        logger.info("OutlineContextMCPServer initialized")

    @staticmethod
    def _target(
        document_path: str, line: Optional[int], heading_path: Optional[List[str]]
    ) -> SectionTarget:
        return SectionTarget(Path(document_path), line=line, heading_path=heading_path)

    def _register_tools(self) -> None:
        """Register MCP tools with the server.

        Registers:
        - build_files_context: Cache the verbatim content of a section's linked files
        - build_summary_context: Cache a summary of a section's linked files
        - invalidate_context: Delete a section's cached entries
        - context_status: Report a section's cached entries
        - get_section_context: Resolve the context that applies to a section
        - prepare_request: Apply request transforms (context injection) to a prompt
        - context_statistics: Session event statistics
        """

        @self.mcp.tool()
        async def build_files_context(
            document_path: str,
            ctx: Context[ServerSession, None],
            line: Optional[int] = None,
            heading_path: Optional[List[str]] = None,
        ) -> Dict[str, Any]:
            """Cache the content of the files linked from a section and its ancestors.

            Args:
                document_path: Path to the outline (.org) document
                ctx: MCP context for logging and progress
                line: 1-based line inside the section
                heading_path: Section titles from the root, used instead of line

            Returns:
                Build result with status, variant, heading_path, message and the
                cached files.
            """
            await ctx.info(f"Building files context in {document_path}")
            try:
                result = self.service.build_files(self._target(document_path, line, heading_path))
            except Exception as e:
                await ctx.error(f"Error building files context: {e}")
                raise
            await ctx.info(result.message)
            return result.to_dict()

        @self.mcp.tool()
        async def build_summary_context(
            document_path: str,
            ctx: Context[ServerSession, None],
            line: Optional[int] = None,
            heading_path: Optional[List[str]] = None,
        ) -> Dict[str, Any]:
            """Summarize the files linked from a section and cache the summary.

            A failed summarization leaves any previous summary in place.

            Args:
                document_path: Path to the outline (.org) document
                ctx: MCP context for logging and progress
                line: 1-based line inside the section
                heading_path: Section titles from the root, used instead of line

            Returns:
                Build result with status, variant, heading_path and message.
            """
            await ctx.info(f"Building summary context in {document_path}")
            try:
                result = await self.service.build_summary(
                    self._target(document_path, line, heading_path)
                )
            except Exception as e:
                await ctx.error(f"Error building summary context: {e}")
                raise
            await ctx.info(result.message)
            return result.to_dict()

        @self.mcp.tool()
        async def invalidate_context(
            document_path: str,
            ctx: Context[ServerSession, None],
            line: Optional[int] = None,
            heading_path: Optional[List[str]] = None,
            variant: Optional[str] = None,
        ) -> Dict[str, Any]:
            """Delete a section's cached context.

            Args:
                document_path: Path to the outline (.org) document
                ctx: MCP context for logging and progress
                line: 1-based line inside the section
                heading_path: Section titles from the root, used instead of line
                variant: "files" or "summary"; all variants when omitted

            Returns:
                Dictionary with the removed variants.
            """
            try:
                parsed = Variant.parse(variant) if variant is not None else None
                removed = self.service.invalidate(
                    self._target(document_path, line, heading_path), parsed
                )
            except Exception as e:
                await ctx.error(f"Error invalidating context: {e}")
                raise
            await ctx.info(f"Removed {len(removed)} entries")
            return {"removed": [v.value for v in removed]}

        @self.mcp.tool()
        async def context_status(
            document_path: str,
            ctx: Context[ServerSession, None],
            line: Optional[int] = None,
            heading_path: Optional[List[str]] = None,
        ) -> Dict[str, Any]:
            """Report the cached entries of a section and whether they are current.

            Args:
                document_path: Path to the outline (.org) document
                ctx: MCP context for logging and progress
                line: 1-based line inside the section
                heading_path: Section titles from the root, used instead of line

            Returns:
                Dictionary with one status record per variant.
            """
            try:
                report = self.service.status(self._target(document_path, line, heading_path))
            except Exception as e:
                await ctx.error(f"Error reading context status: {e}")
                raise
            return {"entries": [status.to_dict() for status in report]}

        @self.mcp.tool()
        async def get_section_context(
            document_path: str,
            ctx: Context[ServerSession, None],
            line: Optional[int] = None,
            heading_path: Optional[List[str]] = None,
        ) -> Dict[str, Any]:
            """Return the cached context that applies to a section.

            Falls back to the nearest ancestor with a valid entry. A stale entry
            at the section itself is rebuilt when auto_update is enabled.

            Args:
                document_path: Path to the outline (.org) document
                ctx: MCP context for logging and progress
                line: 1-based line inside the section
                heading_path: Section titles from the root, used instead of line

            Returns:
                Dictionary with found, content, and (when found) the heading path
                the entry belongs to, its variant, exact and rebuilt flags.
            """
            target = self._target(document_path, line, heading_path)
            try:
                # Rebuild-on-read may run a summarization to completion
                resolution = await asyncio.to_thread(self.service.resolve, target)
            except Exception as e:
                await ctx.error(f"Error resolving context: {e}")
                raise

            if resolution is None:
                return {"found": False, "content": ""}
            return {
                "found": True,
                "content": resolution.content,
                "heading_path": list(resolution.heading_path),
                "variant": resolution.variant.value,
                "exact": resolution.exact,
                "rebuilt": resolution.rebuilt,
            }

        @self.mcp.tool()
        async def prepare_request(
            document_path: str,
            prompt: str,
            ctx: Context[ServerSession, None],
            line: Optional[int] = None,
            heading_path: Optional[List[str]] = None,
        ) -> Dict[str, Any]:
            """Run a prompt through the registered request transforms.

            With context injection enabled, the cached context of the section is
            prepended to the prompt. Otherwise the prompt is returned unchanged.

            Args:
                document_path: Path to the outline (.org) document
                prompt: Prompt issued from the section
                ctx: MCP context for logging and progress
                line: 1-based line inside the section
                heading_path: Section titles from the root, used instead of line

            Returns:
                Dictionary with the prompt to send and whether it was changed.
            """
            request = ContextRequest(
                prompt=prompt,
                document_path=Path(document_path),
                line=line,
                heading_path=tuple(heading_path) if heading_path is not None else None,
            )
            try:
                # Transforms may rebuild stale context on read
                prepared = await asyncio.to_thread(apply_transforms, request)
            except Exception as e:
                await ctx.error(f"Error preparing request: {e}")
                raise
            return {"prompt": prepared.prompt, "injected": prepared.prompt != prompt}

        @self.mcp.tool()
        async def context_statistics(
            ctx: Context[ServerSession, None],
        ) -> Dict[str, Any]:
            """Statistics for this session's cache reads, builds and invalidations.

            Args:
                ctx: MCP context for logging and progress

            Returns:
                Event statistics, or enabled=False when event logging is off.
            """
            stats = self.service.get_event_statistics()
            if stats is None:
                return {"enabled": False}
            return {"enabled": True, **stats.to_dict()}

        logger.info(
            "MCP tools registered: build_files_context, build_summary_context, "
            "invalidate_context, context_status, get_section_context, prepare_request, "
            "context_statistics"
        )

    def run(self, transport: str = "stdio") -> None:
        """Run the MCP server.

        Args:
            transport: Transport type to use. Options:
                - "stdio": Standard input/output (default)
                - "streamable-http": HTTP transport
                - "sse": Server-sent events transport
        """
        logger.info(f"Starting MCP server with {transport} transport")
        self.mcp.run(transport=transport)  # type: ignore[arg-type]

    def shutdown(self) -> None:
        """Shutdown the MCP server and cleanup resources."""
        logger.info("Shutting down MCP server")
        self.service.shutdown()


def parse_args() -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        description="Outline Context Cache MCP Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--data-root",
        type=Path,
        default=None,
        help=f"Root directory for log files (events, logs). Default: {get_default_data_root()}",
    )
    parser.add_argument(
        "--transport",
        type=str,
        choices=["stdio", "streamable-http", "sse"],
        default="stdio",
        help="Transport type for MCP server. Default: stdio",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to a YAML configuration file. Default: ./.outline_context.yml",
    )
    return parser.parse_args()


def main() -> None:
    """Main entry point for MCP server.

    Raises:
        ConfigurationError: If an explicit --config file does not exist.
    """
    args = parse_args()

    data_root = args.data_root or get_default_data_root()
    setup_logging(log_dir=get_logs_dir(data_root))

    if args.config is not None and not args.config.is_file():
        raise ConfigurationError(f"Configuration file not found: {args.config}")
    config = Config(args.config)

    server = OutlineContextMCPServer(config=config, data_root=data_root)
    logger.info(
        f"Starting MCP server with data_root={server.data_root}, session_id={server.session_id}"
    )
    try:
        server.run(transport=args.transport)
    finally:
        server.shutdown()


if __name__ == "__main__":
    main()
