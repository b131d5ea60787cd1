# marketplace_search/models.py
"""SQLAlchemy ORM models for the marketplace catalog.

The catalog is a category tree plus an entity-attribute-value store: each
(listing, attribute) pair is one `AttributeValue` row holding exactly one
typed value. Only leaf categories carry listings. The search core only reads
these tables.
"""
from sqlalchemy import (
    Boolean, Column, Date, ForeignKey, Integer, JSON, Numeric, Text,
    TIMESTAMP, UniqueConstraint, func, Index,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from .db import Base

# option sets are JSON arrays; JSONB on postgres so `?|` is available
OptionSet = JSON().with_variant(JSONB(), "postgresql")


class Category(Base):
    __tablename__ = "categories"
    id = Column(Integer, primary_key=True, index=True)
    slug = Column(Text, nullable=False, unique=True, index=True)
    name_ar = Column(Text)
    name_en = Column(Text)
    parent_id = Column(Integer, ForeignKey("categories.id"), nullable=True, index=True)
    level = Column(Integer, nullable=False, default=0)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    parent = relationship("Category", remote_side=[id], backref="children")


class CategoryKeyword(Base):
    """Curated synonym -> category mapping."""
    __tablename__ = "category_keywords"
    id = Column(Integer, primary_key=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    keyword = Column(Text, nullable=False)
    language = Column(Text, nullable=False, default="ar")


class AttributeDefinition(Base):
    __tablename__ = "listing_attributes"
    id = Column(Integer, primary_key=True, index=True)
    slug = Column(Text, nullable=False, unique=True, index=True)
    type = Column(Text, nullable=False)
    name_ar = Column(Text)
    name_en = Column(Text)
    options = Column(OptionSet)
    min_value = Column(Numeric)
    max_value = Column(Numeric)
    unit = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)


class CategoryAttribute(Base):
    __tablename__ = "category_attributes"
    id = Column(Integer, primary_key=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    attribute_id = Column(Integer, ForeignKey("listing_attributes.id"), nullable=False)
    is_filterable = Column(Boolean, nullable=False, default=True)
    is_required = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)

    attribute = relationship("AttributeDefinition")

    __table_args__ = (UniqueConstraint("category_id", "attribute_id"),)


class City(Base):
    __tablename__ = "cities"
    id = Column(Integer, primary_key=True, index=True)
    name_ar = Column(Text)
    name_en = Column(Text)
    province_ar = Column(Text)
    province_en = Column(Text)


class TransactionType(Base):
    __tablename__ = "transaction_types"
    id = Column(Integer, primary_key=True)
    slug = Column(Text, nullable=False, unique=True)
    name_ar = Column(Text)
    name_en = Column(Text)


class Listing(Base):
    __tablename__ = "listings"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(Text)
    description = Column(Text)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    city_id = Column(Integer, ForeignKey("cities.id"))
    transaction_type_id = Column(Integer, ForeignKey("transaction_types.id"))
    status = Column(Text, nullable=False, default="active")
    is_boosted = Column(Boolean, nullable=False, default=False)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    category = relationship("Category")
    city = relationship("City")
    transaction_type = relationship("TransactionType")


class AttributeValue(Base):
    __tablename__ = "listing_attribute_values"
    id = Column(Integer, primary_key=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), nullable=False)
    attribute_id = Column(Integer, ForeignKey("listing_attributes.id"), nullable=False)
    value_number = Column(Numeric)
    value_boolean = Column(Boolean)
    value_text = Column(Text)
    value_date = Column(Date)
    value_json = Column(OptionSet)

    attribute = relationship("AttributeDefinition")

    __table_args__ = (UniqueConstraint("listing_id", "attribute_id"),)

Index("idx_listings_search", Listing.status, Listing.category_id, Listing.city_id)
Index("idx_lav_listing_attr", AttributeValue.listing_id, AttributeValue.attribute_id)
Index("idx_lav_number", AttributeValue.attribute_id, AttributeValue.value_number)
