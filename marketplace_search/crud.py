# marketplace_search/crud.py
"""Read-only storage helpers for the catalog.

Every helper takes a `Session` first and returns plain Python data so results
can leave the worker thread the session lives in. All literal values reach the
database as bound parameters.
"""
from dataclasses import dataclass
from sqlalchemy import select, and_, or_, func
from sqlalchemy.orm import Session, aliased
from typing import Any, Dict, List, Optional, Sequence
from .models import (
    AttributeDefinition, AttributeValue, Category, CategoryAttribute,
    CategoryKeyword, City, Listing, TransactionType,
)
from .predicates import AttributeSpec, Predicate
from .utils import escape_like


@dataclass(frozen=True)
class ListingSearchPlan:
    category_ids: Optional[Sequence[int]] = None
    city_ids: Optional[Sequence[int]] = None
    transaction_type_id: Optional[int] = None
    keywords: Sequence[str] = ()
    predicates: Sequence[Predicate] = ()
    limit: int = 20
    offset: int = 0
    language: str = "ar"


def load_categories(db: Session) -> List[Dict[str, Any]]:
    counts = (
        db.query(Listing.category_id, func.count(Listing.id).label("n"))
        .filter(Listing.status == "active")
        .group_by(Listing.category_id)
        .subquery()
    )
    rows = (
        db.query(Category, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.category_id == Category.id)
        .filter(Category.is_active.is_(True))
        .order_by(Category.level, Category.sort_order, Category.id)
        .all()
    )
    return [
        {
            "id": c.id, "slug": c.slug, "name_ar": c.name_ar, "name_en": c.name_en,
            "parent_id": c.parent_id, "level": c.level, "sort_order": c.sort_order,
            "listing_count": int(n or 0),
        }
        for c, n in rows
    ]

def load_category_keywords(db: Session) -> List[Dict[str, Any]]:
    rows = db.query(CategoryKeyword.keyword, CategoryKeyword.category_id, CategoryKeyword.language).all()
    return [{"keyword": k, "category_id": cid, "language": lang} for k, cid, lang in rows]

def load_cities(db: Session) -> List[Dict[str, Any]]:
    return [
        {"id": c.id, "name_ar": c.name_ar, "name_en": c.name_en,
         "province_ar": c.province_ar, "province_en": c.province_en}
        for c in db.query(City).order_by(City.id).all()
    ]

def load_transaction_types(db: Session) -> Dict[str, int]:
    return {slug: tid for tid, slug in db.query(TransactionType.id, TransactionType.slug).all()}

def search_categories_by_name(db: Session, term: str, limit: int = 10) -> List[int]:
    pattern = f"%{escape_like(term)}%"
    rows = (
        db.query(Category.id)
        .filter(Category.is_active.is_(True))
        .filter(or_(
            Category.name_ar.ilike(pattern, escape="\\"),
            Category.name_en.ilike(pattern, escape="\\"),
            Category.slug.ilike(pattern, escape="\\"),
        ))
        .order_by(Category.level.desc(), Category.id)
        .limit(limit)
        .all()
    )
    return [r[0] for r in rows]

def category_subtree_ids(db: Session, category_id: int) -> List[int]:
    """The category and all of its active descendants."""
    tree = (
        select(Category.id)
        .where(Category.id == category_id, Category.is_active.is_(True))
        .cte("subtree", recursive=True)
    )
    child = aliased(Category)
    tree = tree.union_all(
        select(child.id).where(child.parent_id == tree.c.id, child.is_active.is_(True))
    )
    return [r[0] for r in db.execute(select(tree.c.id)).all()]

def _spec(a: AttributeDefinition, required: bool = False) -> AttributeSpec:
    return AttributeSpec(
        id=a.id, slug=a.slug, type=a.type,
        options=tuple(a.options or ()),
        min_value=float(a.min_value) if a.min_value is not None else None,
        max_value=float(a.max_value) if a.max_value is not None else None,
        unit=a.unit, required=bool(required),
    )

def attribute_definitions_for(db: Session, category_ids: Optional[Sequence[int]]) -> List[AttributeSpec]:
    """Filterable attributes of the given categories; every active attribute when None."""
    if category_ids is None:
        rows = (
            db.query(AttributeDefinition)
            .filter(AttributeDefinition.is_active.is_(True))
            .order_by(AttributeDefinition.id)
            .all()
        )
        return [_spec(a) for a in rows]
    rows = (
        db.query(AttributeDefinition, CategoryAttribute.is_required)
        .join(CategoryAttribute, CategoryAttribute.attribute_id == AttributeDefinition.id)
        .filter(and_(
            CategoryAttribute.category_id.in_(list(category_ids)),
            CategoryAttribute.is_filterable.is_(True),
            AttributeDefinition.is_active.is_(True),
        ))
        .order_by(CategoryAttribute.sort_order, AttributeDefinition.id)
        .all()
    )
    specs: Dict[int, AttributeSpec] = {}
    for a, required in rows:
        if a.id not in specs or required:
            specs[a.id] = _spec(a, required)
    return list(specs.values())

def search_listings(db: Session, plan: ListingSearchPlan) -> List[Dict[str, Any]]:
    q = (
        db.query(
            Listing.id, Listing.title, Listing.description, Listing.category_id, Category.slug,
            Listing.city_id, City.name_ar, City.name_en, City.province_ar, City.province_en,
            TransactionType.slug, Listing.is_boosted, Listing.created_at,
        )
        .join(Category, Category.id == Listing.category_id)
        .outerjoin(City, City.id == Listing.city_id)
        .outerjoin(TransactionType, TransactionType.id == Listing.transaction_type_id)
        .filter(Listing.status == "active")
    )
    conds = []
    if plan.category_ids is not None:
        conds.append(Listing.category_id.in_(list(plan.category_ids)))
    if plan.city_ids is not None:
        conds.append(Listing.city_id.in_(list(plan.city_ids)))
    if plan.transaction_type_id is not None:
        conds.append(Listing.transaction_type_id == plan.transaction_type_id)
    if plan.keywords:
        kw_conds = []
        for kw in plan.keywords:
            pattern = f"%{escape_like(kw)}%"
            kw_conds.append(Listing.title.ilike(pattern, escape="\\"))
            kw_conds.append(Listing.description.ilike(pattern, escape="\\"))
        conds.append(or_(*kw_conds))
    for predicate in plan.predicates:
        conds.append(predicate.to_clause())
    if conds:
        q = q.filter(and_(*conds))
    rows = (
        q.order_by(Listing.is_boosted.desc(), Listing.created_at.desc(), Listing.id.asc())
        .offset(plan.offset)
        .limit(plan.limit)
        .all()
    )
    en = plan.language == "en"
    items = []
    for (lid, title, description, cat_id, cat_slug, city_id, city_ar, city_en,
         prov_ar, prov_en, tt_slug, boosted, created_at) in rows:
        items.append({
            "id": lid,
            "title": title,
            "description": description,
            "category_id": cat_id,
            "category_slug": cat_slug,
            "city_id": city_id,
            "city": (city_en or city_ar) if en else (city_ar or city_en),
            "province": (prov_en or prov_ar) if en else (prov_ar or prov_en),
            "transaction_type": tt_slug,
            "is_boosted": bool(boosted),
            "created_at": created_at,
        })
    return items

def _typed_value(row):
    if row.value_json is not None:
        return list(row.value_json) if isinstance(row.value_json, (list, tuple)) else row.value_json
    if row.value_number is not None:
        n = float(row.value_number)
        return int(n) if n.is_integer() else n
    if row.value_boolean is not None:
        return bool(row.value_boolean)
    if row.value_date is not None:
        return row.value_date
    return row.value_text

def load_attribute_values(db: Session, listing_ids: Sequence[int]) -> Dict[int, Dict[str, Any]]:
    if not listing_ids:
        return {}
    rows = (
        db.query(
            AttributeValue.listing_id, AttributeDefinition.slug,
            AttributeValue.value_number, AttributeValue.value_boolean,
            AttributeValue.value_text, AttributeValue.value_date, AttributeValue.value_json,
        )
        .join(AttributeDefinition, AttributeDefinition.id == AttributeValue.attribute_id)
        .filter(AttributeValue.listing_id.in_(list(listing_ids)))
        .all()
    )
    out: Dict[int, Dict[str, Any]] = {lid: {} for lid in listing_ids}
    for row in rows:
        out.setdefault(row.listing_id, {})[row.slug] = _typed_value(row)
    return out
