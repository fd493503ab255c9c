# app/services/rbac_catalog_service.py
"""
Resource catalog: active resources with their actions and fields, and the
hierarchy built from parent_code links.

Only active rows are returned. A deactivated resource drops out of every
resolution, but grants referencing it stay in place so reactivation restores
the previous behaviour.
"""

import logging
from collections import defaultdict
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.permission_cache import RESOURCES_KEY, RESOURCES_TREE_KEY, PermissionCache
from app.models.rbac import RbacResource, RbacResourceAction, RbacResourceField, ResourceCategory
from app.schemas.rbac import (
    ResourceActionResponse,
    ResourceFieldResponse,
    ResourceResponse,
    ResourceTree,
    ResourceTreeNode,
)
from app.services.rbac_errors import PermissionBackendError, ResourceNotFoundError

logger = logging.getLogger(__name__)


def load_active_resources(db: Session) -> list[ResourceResponse]:
    """
    Read the active catalog straight from the database, ordered by sort_order.
    Raises PermissionBackendError if the store cannot be read; callers treat
    a missing catalog as "deny all".
    """
    try:
        resources = (
            db.query(RbacResource)
            .filter(RbacResource.is_active.is_(True))
            .order_by(RbacResource.sort_order, RbacResource.code)
            .all()
        )
        actions = db.query(RbacResourceAction).filter(RbacResourceAction.is_active.is_(True)).all()
        fields = db.query(RbacResourceField).filter(RbacResourceField.is_active.is_(True)).all()
    except SQLAlchemyError as exc:
        logger.error(f"Failed to load RBAC resource catalog: {exc}")
        raise PermissionBackendError("Failed to load resource catalog") from exc

    actions_by_resource: dict = defaultdict(list)
    for a in actions:
        actions_by_resource[a.resource_id].append(ResourceActionResponse.model_validate(a))

    fields_by_resource: dict = defaultdict(list)
    for f in fields:
        fields_by_resource[f.resource_id].append(ResourceFieldResponse.model_validate(f))

    return [
        ResourceResponse(
            id=r.id,
            code=r.code,
            name=r.name,
            description=r.description,
            category=r.category,
            path_pattern=r.path_pattern,
            parent_code=r.parent_code,
            sort_order=r.sort_order,
            element_type=r.element_type,
            is_active=r.is_active,
            actions=actions_by_resource.get(r.id, []),
            fields=fields_by_resource.get(r.id, []),
        )
        for r in resources
    ]


def build_resource_tree(resources: Sequence[ResourceResponse]) -> ResourceTree:
    """
    Assemble the hierarchy from parent_code links.

    - Children are ordered by (sort_order, code).
    - A resource whose parent is missing or inactive becomes a root.
    - Roots are split by category; descendants stay under their root.
    - Resources caught in a parent_code cycle are unreachable and skipped.
    """
    by_code = {r.code: r for r in resources}
    children: dict[str, list[ResourceResponse]] = defaultdict(list)
    roots: list[ResourceResponse] = []

    for r in resources:
        if r.parent_code and r.parent_code in by_code and r.parent_code != r.code:
            children[r.parent_code].append(r)
        else:
            roots.append(r)

    def sort_key(r: ResourceResponse) -> tuple[int, str]:
        return (r.sort_order, r.code)

    visited: set[str] = set()

    def build(r: ResourceResponse) -> ResourceTreeNode:
        visited.add(r.code)
        return ResourceTreeNode(
            id=r.id,
            code=r.code,
            name=r.name,
            description=r.description,
            category=r.category,
            element_type=r.element_type,
            parent_code=r.parent_code,
            sort_order=r.sort_order,
            actions=r.declared_actions,
            children=[build(c) for c in sorted(children[r.code], key=sort_key) if c.code not in visited],
        )

    tree = ResourceTree()
    for root in sorted(roots, key=sort_key):
        node = build(root)
        if root.category == ResourceCategory.ADMIN.value:
            tree.admin.append(node)
        else:
            tree.hospital.append(node)

    unreachable = set(by_code) - visited
    if unreachable:
        logger.warning(f"RBAC resources unreachable from any root (parent cycle?): {sorted(unreachable)}")

    return tree


def get_resources(db: Session, cache: PermissionCache) -> list[ResourceResponse]:
    """Active catalog, served from cache when possible."""
    cached = cache.get(RESOURCES_KEY)
    if cached is not None:
        return [ResourceResponse.model_validate(r) for r in cached]

    resources = load_active_resources(db)
    cache.set(RESOURCES_KEY, [r.model_dump(mode="json") for r in resources])
    return resources


def get_resources_tree(db: Session, cache: PermissionCache) -> ResourceTree:
    cached = cache.get(RESOURCES_TREE_KEY)
    if cached is not None:
        return ResourceTree.model_validate(cached)

    tree = build_resource_tree(get_resources(db, cache))
    cache.set(RESOURCES_TREE_KEY, tree.model_dump(mode="json"))
    return tree


def get_resource_by_id(db: Session, cache: PermissionCache, resource_id) -> ResourceResponse:
    for r in get_resources(db, cache):
        if r.id == resource_id:
            return r
    raise ResourceNotFoundError(f"Resource {resource_id} not found or inactive")


def get_resource_by_code(db: Session, cache: PermissionCache, code: str) -> ResourceResponse:
    for r in get_resources(db, cache):
        if r.code == code:
            return r
    raise ResourceNotFoundError(f"Resource '{code}' not found or inactive")


def set_resource_active(db: Session, cache: PermissionCache, code: str, is_active: bool) -> RbacResource:
    """
    Soft (de)activate a resource. Grants are left untouched. The whole cache
    is cleared since every resolved set may change.
    """
    try:
        resource = db.query(RbacResource).filter(RbacResource.code == code).first()
    except SQLAlchemyError as exc:
        logger.error(f"Failed to read resource '{code}': {exc}")
        raise PermissionBackendError("Failed to read resource") from exc

    if resource is None:
        raise ResourceNotFoundError(f"Resource '{code}' not found")

    if resource.is_active != is_active:
        try:
            resource.is_active = is_active
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"Failed to update resource '{code}': {exc}")
            raise PermissionBackendError("Failed to update resource") from exc
        logger.info(f"RBAC resource '{code}' is_active set to {is_active}")

    cache.invalidate()
    db.refresh(resource)
    return resource
