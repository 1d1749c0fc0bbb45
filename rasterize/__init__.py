"""Document rasterization backed by Poppler's command line tools."""

from .pages import DocumentPages, ExtractionResult, PageExtractor, allocate_pages_dir
from .pdftocairo import (
    PageRasterizer,
    PopplerRasterizer,
    RasterizerConfig,
    RasterizerError,
    ToolDiscoveryError,
    list_page_images,
)

__all__ = [
    "DocumentPages",
    "ExtractionResult",
    "PageExtractor",
    "PageRasterizer",
    "PopplerRasterizer",
    "RasterizerConfig",
    "RasterizerError",
    "ToolDiscoveryError",
    "allocate_pages_dir",
    "list_page_images",
]
