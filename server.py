#!/usr/bin/env python3
"""
Hybris MCP Server
Exposes SAP Commerce (Hybris) OCC lookups and HAC console operations as MCP tools
"""

import logging
import os
import sys
from typing import Any, Awaitable, Callable, Dict, Optional

import bleach
from fastmcp import FastMCP

from hybris_client import HybrisClient
from hybris_config import load_config
from hybris_errors import (
    ConfigurationError,
    HybrisError,
    RemoteError,
    UnexpectedResponseError,
)

logger = logging.getLogger(__name__)

MAX_ERROR_BODY_LENGTH = 2000

# Initialize MCP server
mcp = FastMCP("hybris-mcp")

# Process-wide client, created from the environment on first use
_client: Optional[HybrisClient] = None


def get_client() -> HybrisClient:
    """Get or create the Hybris client"""
    global _client
    if _client is None:
        _client = HybrisClient(load_config())
        logger.info(f"Hybris client configured for {_client.config.base_url}")
    return _client


def error_text(body: str) -> str:
    """Reduce an error body (often an HTML error page) to bounded plain text"""
    text = bleach.clean(body or '', tags=[], attributes={}, strip=True)
    text = ' '.join(text.split())
    return text[:MAX_ERROR_BODY_LENGTH]


def error_result(error: HybrisError) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "success": False,
        "error": str(error),
        "error_type": type(error).__name__,
    }
    if isinstance(error, RemoteError):
        result["error"] = f"Backend returned status {error.status}"
        result["status"] = error.status
        result["body"] = error_text(error.body)
    elif isinstance(error, UnexpectedResponseError):
        result["status"] = error.status
        result["body_prefix"] = error.body_prefix
    return result


async def run_tool(name: str, operation: Callable[[HybrisClient], Awaitable[Any]]) -> Dict[str, Any]:
    """Run a client operation and wrap the outcome as a tagged result"""
    try:
        data = await operation(get_client())
    except HybrisError as e:
        logger.error(f"Tool {name} failed: {type(e).__name__}: {e}")
        return error_result(e)
    return {"success": True, "data": data}


# ============================================================================
# OCC tools
# ============================================================================

@mcp.tool()
async def search_products(query: str, page_size: int = 20, current_page: int = 0) -> Dict[str, Any]:
    """
    Search for products in the Hybris catalog using a query string

    Args:
        query: Search query for products
        page_size: Number of results per page (default: 20)
        current_page: Page number to retrieve (0-indexed, default: 0)
    """
    return await run_tool("search_products", lambda client: client.search_products(query, page_size, current_page))


@mcp.tool()
async def get_product(product_code: str) -> Dict[str, Any]:
    """
    Get detailed information about a specific product by its code

    Args:
        product_code: The product code/SKU
    """
    return await run_tool("get_product", lambda client: client.get_product(product_code))


@mcp.tool()
async def get_categories() -> Dict[str, Any]:
    """Get the category tree from the product catalog"""
    return await run_tool("get_categories", lambda client: client.get_categories())


@mcp.tool()
async def get_category(category_code: str) -> Dict[str, Any]:
    """Get details about a specific category"""
    return await run_tool("get_category", lambda client: client.get_category(category_code))


@mcp.tool()
async def get_orders(user_id: str) -> Dict[str, Any]:
    """
    Get orders for a specific user

    Args:
        user_id: User ID or email
    """
    return await run_tool("get_orders", lambda client: client.get_orders(user_id))


@mcp.tool()
async def get_order(user_id: str, order_code: str) -> Dict[str, Any]:
    """
    Get details of a specific order

    Args:
        user_id: User ID or email
        order_code: Order code/number
    """
    return await run_tool("get_order", lambda client: client.get_order(user_id, order_code))


# ============================================================================
# HAC tools
# ============================================================================

@mcp.tool()
async def flexible_search(query: str, max_count: int = 100) -> Dict[str, Any]:
    """
    Execute a FlexibleSearch query against the Hybris database

    Args:
        query: FlexibleSearch query (e.g., "SELECT {pk}, {code} FROM {Product}")
        max_count: Maximum number of results (default: 100)
    """
    return await run_tool("flexible_search", lambda client: client.execute_flexible_search(query, max_count))


@mcp.tool()
async def execute_groovy(script: str) -> Dict[str, Any]:
    """Execute a Groovy script in the Hybris scripting console"""
    return await run_tool("execute_groovy", lambda client: client.execute_groovy_script(script))


@mcp.tool()
async def import_impex(impex_content: str) -> Dict[str, Any]:
    """
    Import data using ImpEx format

    Args:
        impex_content: ImpEx content to import
    """
    return await run_tool("import_impex", lambda client: client.import_impex(impex_content))


@mcp.tool()
async def export_impex(flex_query: str) -> Dict[str, Any]:
    """
    Export data to ImpEx format using a FlexibleSearch query

    Args:
        flex_query: FlexibleSearch query for data to export
    """
    return await run_tool("export_impex", lambda client: client.export_impex(flex_query))


@mcp.tool()
async def get_cronjobs() -> Dict[str, Any]:
    """List all cron jobs and their status"""
    return await run_tool("get_cronjobs", lambda client: client.get_cron_jobs())


@mcp.tool()
async def trigger_cronjob(cron_job_code: str) -> Dict[str, Any]:
    """
    Trigger a cron job to run

    Args:
        cron_job_code: Code of the cron job to trigger
    """
    return await run_tool("trigger_cronjob", lambda client: client.trigger_cron_job(cron_job_code))


@mcp.tool()
async def clear_cache(cache_type: Optional[str] = None) -> Dict[str, Any]:
    """
    Clear the Hybris cache

    Args:
        cache_type: Specific cache type to clear (clears all if not specified)
    """
    return await run_tool("clear_cache", lambda client: client.clear_cache(cache_type))


@mcp.tool()
async def get_system_info() -> Dict[str, Any]:
    """Get Hybris system information and health status"""
    return await run_tool("get_system_info", lambda client: client.get_system_info())


@mcp.tool()
async def trigger_catalog_sync(catalog_id: str, source_version: str, target_version: str) -> Dict[str, Any]:
    """
    Trigger a catalog synchronization between versions

    Args:
        catalog_id: Catalog ID to sync
        source_version: Source catalog version (e.g., "Staged")
        target_version: Target catalog version (e.g., "Online")
    """
    return await run_tool(
        "trigger_catalog_sync",
        lambda client: client.trigger_catalog_sync(catalog_id, source_version, target_version)
    )


@mcp.tool()
async def health_check() -> Dict[str, Any]:
    """Check if the Hybris instance is healthy and reachable"""
    return await run_tool("health_check", lambda client: client.health_check())


# ============================================================================
# Main entry point
# ============================================================================

def main():
    """Main entry point for the Hybris MCP server"""
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO'),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    try:
        client = get_client()
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(1)

    logger.info("Starting Hybris MCP server")
    logger.info(f"  Base URL: {client.config.base_url}")
    logger.info(f"  HAC path: {client.config.hac_path or '/'}")
    logger.info(f"  Base site: {client.config.base_site_id}")
    logger.info(f"  Timeout: {client.config.timeout_seconds}s (SSL verify: {client.config.ssl_verify})")
    mcp.run()


if __name__ == "__main__":
    main()
