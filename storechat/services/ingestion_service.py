"""Catalog document ingestion.

WHAT:
    Pages through a merchant's products, collections and online store pages
    and upserts one `Document` per record for chat retrieval.

WHY:
    The chat responder only searches local documents; this job keeps them in
    step with the store. It runs on the arq worker because a large catalog
    takes minutes to page through.

DESIGN:
    - Kinds run in order product -> collection -> page. A Shopify failure in
      one kind is recorded as "<Kind>: <message>" and the next kind still runs.
    - Documents are upserted by (merchant, source, source_id).
    - `job.progress` is committed after every record so the admin can poll it.
    - Anything other than a Shopify error fails the whole job: status=failed,
      error_message set, exception re-raised for the worker to report.

REFERENCES:
    - storechat/services/shopify_client.py
    - storechat/workers/arq_worker.py::process_ingestion_job
    - storechat/routers/merchant.py (enqueue and poll)
"""

import html
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from storechat.models import Document, DocumentSourceEnum, IngestionJob, IngestionJobStatusEnum, Merchant
from storechat.services.shopify_client import ShopifyAPIError, ShopifyClient
from storechat.telemetry import capture_exception

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")

PageFetcher = Callable[..., Awaitable[Tuple[List[Dict[str, Any]], Optional[str]]]]


@dataclass
class IngestionResult:
    products: int = 0
    collections: int = 0
    pages: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.products + self.collections + self.pages


def strip_html(value: Optional[str]) -> str:
    """Plain text from Shopify rich text: tags removed, entities decoded."""
    if not value:
        return ""
    text = _TAG_RE.sub("\n", value)
    text = html.unescape(text)
    text = _SPACE_RE.sub(" ", text)
    text = _BLANK_LINES_RE.sub("\n", text)
    return "\n".join(line.strip() for line in text.split("\n") if line.strip())


# =============================================================================
# DOCUMENT BUILDERS
# =============================================================================

def product_document(product: Dict[str, Any]) -> Tuple[str, str, Dict[str, Any]]:
    tags = product.get("tags") or []
    tags_text = ", ".join(tags) if isinstance(tags, list) else str(tags)
    price = product.get("price")
    content = "\n".join([
        f"Product: {product.get('title', '')}",
        f"Description: {strip_html(product.get('description'))}",
        f"Price: {price if price is not None else ''}",
        f"Vendor: {product.get('vendor', '')}",
        f"Tags: {tags_text}",
        f"Handle: {product.get('handle', '')}",
    ])
    metadata = {
        "price": price,
        "vendor": product.get("vendor"),
        "tags": tags,
        "handle": product.get("handle"),
    }
    return product.get("title", ""), content, metadata


def collection_document(collection: Dict[str, Any]) -> Tuple[str, str, Dict[str, Any]]:
    content = "\n".join([
        f"Collection: {collection.get('title', '')}",
        f"Description: {strip_html(collection.get('description'))}",
        f"Handle: {collection.get('handle', '')}",
    ])
    return collection.get("title", ""), content, {"handle": collection.get("handle")}


def page_document(page: Dict[str, Any]) -> Tuple[str, str, Dict[str, Any]]:
    content = "\n".join([
        f"Page: {page.get('title', '')}",
        f"Content: {strip_html(page.get('body'))}",
        f"Handle: {page.get('handle', '')}",
    ])
    return page.get("title", ""), content, {"handle": page.get("handle")}


# =============================================================================
# SERVICE
# =============================================================================

class DocumentIngestionService:
    """Runs one ingestion job for one merchant.

    Usage:
        service = DocumentIngestionService(db, client)
        result = await service.run_job(merchant, job)
    """

    def __init__(self, db: Session, client: ShopifyClient, page_size: int = DEFAULT_PAGE_SIZE):
        self.db = db
        self.client = client
        self.page_size = page_size

    def _kinds(self) -> List[Tuple[DocumentSourceEnum, str, str, PageFetcher, Callable]]:
        return [
            (DocumentSourceEnum.product, "Products", "products", self.client.get_products, product_document),
            (DocumentSourceEnum.collection, "Collections", "collections", self.client.get_collections, collection_document),
            (DocumentSourceEnum.page, "Pages", "pages", self.client.get_pages, page_document),
        ]

    async def run_job(self, merchant: Merchant, job: IngestionJob) -> IngestionResult:
        """Mark the job running, ingest, and record the outcome on the job."""
        job.status = IngestionJobStatusEnum.running
        job.started_at = datetime.utcnow()
        job.progress = 0
        job.total = 0
        job.errors = []
        job.error_message = None
        self.db.commit()

        try:
            result = await self.ingest(merchant, job)
        except Exception as exc:
            self.db.rollback()
            job.status = IngestionJobStatusEnum.failed
            job.error_message = str(exc) or exc.__class__.__name__
            job.completed_at = datetime.utcnow()
            self.db.commit()
            logger.error("[INGEST] Job %s failed for %s: %s", job.id, merchant.shop, exc)
            raise

        job.status = IngestionJobStatusEnum.completed
        job.total = job.progress
        job.products = result.products
        job.collections = result.collections
        job.pages = result.pages
        job.errors = list(result.errors)
        job.completed_at = datetime.utcnow()
        self.db.commit()

        logger.info(
            "[INGEST] Job %s complete for %s: products=%d collections=%d pages=%d errors=%d",
            job.id, merchant.shop, result.products, result.collections, result.pages, len(result.errors),
        )
        return result

    async def ingest(self, merchant: Merchant, job: IngestionJob) -> IngestionResult:
        result = IngestionResult()

        for source, label, counter, fetch, build in self._kinds():
            try:
                await self._ingest_kind(merchant, job, source, counter, fetch, build, result)
            except ShopifyAPIError as exc:
                result.errors.append(f"{label}: {exc.message}")
                logger.warning("[INGEST] %s failed for %s: %s", label, merchant.shop, exc.message)
                capture_exception(exc, extra={"shop": merchant.shop, "kind": counter, "job_id": str(job.id)})

        return result

    async def _ingest_kind(
        self,
        merchant: Merchant,
        job: IngestionJob,
        source: DocumentSourceEnum,
        counter: str,
        fetch: PageFetcher,
        build: Callable,
        result: IngestionResult,
    ) -> None:
        cursor: Optional[str] = None
        while True:
            records, cursor = await fetch(cursor=cursor, limit=self.page_size)
            for record in records:
                if not record.get("id"):
                    continue
                title, content, metadata = build(record)
                self._upsert_document(merchant, source, record["id"], title, content, metadata)
                setattr(result, counter, getattr(result, counter) + 1)
                job.progress = (job.progress or 0) + 1
                self.db.commit()
            if not cursor:
                break

    def _upsert_document(
        self,
        merchant: Merchant,
        source: DocumentSourceEnum,
        source_id: str,
        title: str,
        content: str,
        metadata: Dict[str, Any],
    ) -> Document:
        document = (
            self.db.query(Document)
            .filter(
                Document.merchant_id == merchant.id,
                Document.source == source,
                Document.source_id == source_id,
            )
            .first()
        )
        if document is None:
            document = Document(merchant_id=merchant.id, source=source, source_id=source_id)
            self.db.add(document)

        document.title = title or source_id
        document.content = content
        document.doc_metadata = metadata
        document.updated_at = datetime.utcnow()
        return document
