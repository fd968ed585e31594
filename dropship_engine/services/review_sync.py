import logging
import re
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dropship_engine.models import Product, ProductStatus, Review
from dropship_engine.schemas.supplier import SupplierReview
from dropship_engine.settings import Settings, settings as default_settings
from dropship_engine.supplier_client import SupplierAuthError, SupplierError

logger = logging.getLogger(__name__)

CJK = re.compile(r"[\u3040-\u30ff\u3400-\u9fff]")

# how many reviews to take per star rating before topping up
RATING_MIX = ((5, 4), (4, 3), (3, 3))


@dataclass
class ReviewSyncResult:
    synced: int
    review_count: int
    average_rating: float


def eligible_reviews(reviews: list[SupplierReview]) -> list[SupplierReview]:
    return [r for r in reviews if r.score >= 3 and r.comment and not CJK.search(r.comment)]


def pick_mixed_ratings(reviews: list[SupplierReview], limit: int) -> list[SupplierReview]:
    picked: list[SupplierReview] = []
    for score, count in RATING_MIX:
        picked.extend([r for r in reviews if r.score == score][:count])
    if len(picked) < limit:
        taken = {r.comment_id for r in picked}
        picked.extend([r for r in reviews if r.comment_id not in taken][: limit - len(picked)])
    return picked[:limit]


def _upsert_review(session: Session, product: Product, review: SupplierReview) -> None:
    row = session.execute(
        select(Review).where(Review.supplier_comment_id == review.comment_id)
    ).scalar_one_or_none()
    if row is None:
        row = Review(product_id=product.id, supplier_comment_id=review.comment_id, is_approved=True)
        session.add(row)
    row.rating = review.score
    row.customer_name = review.user or "Customer"
    row.body = review.comment
    row.images = review.images
    row.reviewer_country = review.country_code
    row.reviewed_at = review.commented_at


def refresh_rating(session: Session, product: Product) -> tuple[int, float]:
    count, total = session.execute(
        select(func.count(Review.id), func.coalesce(func.sum(Review.rating), 0)).where(
            Review.product_id == product.id, Review.is_approved.is_(True)
        )
    ).one()
    average = 0.0
    if count:
        average = float((Decimal(int(total)) / Decimal(count)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))
    product.review_count = count
    product.average_rating = average
    return count, average


def sync_reviews_for_product(
    session: Session,
    client: Any,
    product: Product,
    settings: Settings | None = None,
) -> ReviewSyncResult:
    settings = settings or default_settings
    page = client.get_reviews(product.external_ref, page=1, size=settings.review_sync_page_size)
    eligible = eligible_reviews(page.items)
    mixed = pick_mixed_ratings(eligible, settings.review_sync_keep)
    logger.info(
        f"[REVIEWS] {product.external_ref}: supplier total={page.total}, fetched={len(page.items)}, "
        f"eligible={len(eligible)}, keeping={len(mixed)}"
    )

    for review in mixed:
        _upsert_review(session, product, review)
    session.flush()
    count, average = refresh_rating(session, product)
    session.commit()
    return ReviewSyncResult(synced=len(mixed), review_count=count, average_rating=average)


def sync_reviews_for_all(
    session: Session,
    client: Any,
    settings: Settings | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, int]:
    """Mirror reviews for every active/pending supplier-linked product, pausing between products."""
    settings = settings or default_settings
    products = session.execute(
        select(Product)
        .where(
            Product.status.in_([ProductStatus.ACTIVE.value, ProductStatus.PENDING.value]),
            Product.external_ref.is_not(None),
        )
        .order_by(Product.created_at, Product.id)
    ).scalars().all()

    synced = skipped = errors = 0
    for index, product in enumerate(products):
        if index and settings.review_sync_delay:
            sleep(settings.review_sync_delay)
        try:
            outcome = sync_reviews_for_product(session, client, product, settings)
            if outcome.synced:
                synced += 1
            else:
                skipped += 1
        except SupplierAuthError:
            raise
        except (SupplierError, SQLAlchemyError) as e:
            session.rollback()
            logger.error(f"[REVIEWS] {product.external_ref} failed: {e}")
            errors += 1

    logger.info(f"[REVIEWS] Synced reviews for {synced} products ({skipped} without eligible reviews, {errors} errors)")
    return {"synced": synced, "skipped": skipped, "errors": errors}
