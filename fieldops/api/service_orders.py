from datetime import datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from fieldops.api.deps import get_actor, get_db
from fieldops.schemas.common import ListResponse
from fieldops.schemas.service_orders import (
    AssignmentCreate,
    AssignmentRead,
    AuditEntryRead,
    ResolutionRead,
    ResolutionUpsert,
    ServiceOrderCreate,
    ServiceOrderFormDataUpdate,
    ServiceOrderPartCreate,
    ServiceOrderPartRead,
    ServiceOrderRead,
    ServiceOrderScheduleUpdate,
    ServiceOrderSignaturesUpdate,
    ServiceOrderStatusChangeRead,
    ServiceOrderStatusUpdate,
    ServiceOrderTimestampsUpdate,
    ServiceOrderUpdate,
    WorkLogRead,
    WorkSessionStart,
    WorkSessionStop,
)
from fieldops.services.service_orders import ActorContext, SoftSkip
from fieldops.services.service_orders import lifecycle as lifecycle_service
from fieldops.services.service_orders import orders as orders_service

router = APIRouter()


@router.post(
    "/service-orders",
    response_model=ServiceOrderRead,
    status_code=status.HTTP_201_CREATED,
    tags=["service-orders"],
)
def create_service_order(
    payload: ServiceOrderCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.create(db, actor, payload)


@router.get(
    "/service-orders", response_model=ListResponse[ServiceOrderRead], tags=["service-orders"]
)
def list_service_orders(
    status: str | None = None,
    technician_id: str | None = None,
    search: str | None = None,
    due_from: datetime | None = None,
    due_to: datetime | None = None,
    is_active: bool | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.list_response(
        db,
        actor,
        status,
        technician_id,
        search,
        due_from,
        due_to,
        is_active,
        order_by,
        order_dir,
        limit,
        offset,
    )


@router.get(
    "/service-orders/{order_id}", response_model=ServiceOrderRead, tags=["service-orders"]
)
def get_service_order(
    order_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.get(db, actor, order_id)


@router.patch(
    "/service-orders/{order_id}", response_model=ServiceOrderRead, tags=["service-orders"]
)
def update_service_order(
    order_id: str,
    payload: ServiceOrderUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.update(db, actor, order_id, payload)


@router.put(
    "/service-orders/{order_id}/form-data",
    response_model=ServiceOrderRead,
    tags=["service-orders"],
)
def replace_service_order_form_data(
    order_id: str,
    payload: ServiceOrderFormDataUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.update_form_data(db, actor, order_id, payload)


@router.patch(
    "/service-orders/{order_id}/signatures",
    response_model=ServiceOrderRead,
    tags=["service-orders"],
)
def update_service_order_signatures(
    order_id: str,
    payload: ServiceOrderSignaturesUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.set_signatures(db, actor, order_id, payload)


@router.get(
    "/service-orders/{order_id}/parts",
    response_model=list[ServiceOrderPartRead],
    tags=["service-order-parts"],
)
def list_service_order_parts(
    order_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.list_parts(db, actor, order_id)


@router.post(
    "/service-orders/{order_id}/parts",
    response_model=ServiceOrderPartRead,
    status_code=status.HTTP_201_CREATED,
    tags=["service-order-parts"],
)
def add_service_order_part(
    order_id: str,
    payload: ServiceOrderPartCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.add_part(db, actor, order_id, payload)


@router.delete(
    "/service-orders/{order_id}/parts/{part_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["service-order-parts"],
)
def remove_service_order_part(
    order_id: str,
    part_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    orders_service.service_orders.remove_part(db, actor, order_id, part_id)


@router.post(
    "/service-orders/{order_id}/status",
    response_model=ServiceOrderStatusChangeRead,
    tags=["service-orders"],
)
def update_service_order_status(
    order_id: str,
    payload: ServiceOrderStatusUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    result = lifecycle_service.service_order_lifecycle.update_status(db, actor, order_id, payload)
    if isinstance(result, SoftSkip):
        return ServiceOrderStatusChangeRead(
            outcome="soft_skip",
            message=result.message,
            service_order=ServiceOrderRead.model_validate(result.service_order),
        )
    return ServiceOrderStatusChangeRead(
        outcome="applied", service_order=ServiceOrderRead.model_validate(result)
    )


@router.patch(
    "/service-orders/{order_id}/timestamps",
    response_model=ServiceOrderRead,
    tags=["service-orders"],
)
def update_service_order_timestamps(
    order_id: str,
    payload: ServiceOrderTimestampsUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return lifecycle_service.service_order_lifecycle.update_timestamps(db, actor, order_id, payload)


@router.patch(
    "/service-orders/{order_id}/schedule",
    response_model=ServiceOrderRead,
    tags=["service-orders"],
)
def schedule_service_order(
    order_id: str,
    payload: ServiceOrderScheduleUpdate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return lifecycle_service.service_order_lifecycle.schedule(db, actor, order_id, payload)


@router.post(
    "/service-orders/{order_id}/work-sessions",
    response_model=WorkLogRead,
    status_code=status.HTTP_201_CREATED,
    tags=["work-sessions"],
)
def start_work_session(
    order_id: str,
    payload: WorkSessionStart | None = None,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return lifecycle_service.service_order_lifecycle.start_session(db, actor, order_id, payload)


@router.post(
    "/service-orders/{order_id}/work-sessions/{session_id}/stop",
    response_model=WorkLogRead,
    tags=["work-sessions"],
)
def stop_work_session(
    order_id: str,
    session_id: str,
    payload: WorkSessionStop | None = None,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return lifecycle_service.service_order_lifecycle.stop_session(
        db, actor, order_id, session_id, payload
    )


@router.get("/work-logs", response_model=ListResponse[WorkLogRead], tags=["work-sessions"])
def list_work_logs(
    service_order_id: str | None = None,
    user_id: str | None = None,
    open_only: bool | None = Query(default=None, alias="open"),
    order_by: str = Query(default="started_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.work_logs.list_response(
        db, actor, service_order_id, user_id, open_only, order_by, order_dir, limit, offset
    )


@router.get(
    "/service-orders/{order_id}/resolution",
    response_model=ResolutionRead,
    tags=["service-orders"],
)
def get_service_order_resolution(
    order_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.get_resolution(db, actor, order_id)


@router.put(
    "/service-orders/{order_id}/resolution",
    response_model=ResolutionRead,
    tags=["service-orders"],
)
def upsert_service_order_resolution(
    order_id: str,
    payload: ResolutionUpsert,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.upsert_resolution(db, actor, order_id, payload)


@router.get(
    "/service-orders/{order_id}/assignments",
    response_model=list[AssignmentRead],
    tags=["service-order-assignments"],
)
def list_service_order_assignments(
    order_id: str,
    active_only: bool = True,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.list_assignments(db, actor, order_id, active_only)


@router.post(
    "/service-orders/{order_id}/assignments",
    response_model=AssignmentRead,
    status_code=status.HTTP_201_CREATED,
    tags=["service-order-assignments"],
)
def create_service_order_assignment(
    order_id: str,
    payload: AssignmentCreate,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.add_assignment(db, actor, order_id, payload)


@router.delete(
    "/service-orders/{order_id}/assignments/{assignment_id}",
    response_model=AssignmentRead,
    tags=["service-order-assignments"],
)
def remove_service_order_assignment(
    order_id: str,
    assignment_id: str,
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.service_orders.remove_assignment(db, actor, order_id, assignment_id)


@router.get(
    "/service-orders/{order_id}/audit",
    response_model=ListResponse[AuditEntryRead],
    tags=["service-orders"],
)
def list_service_order_audit(
    order_id: str,
    field: str | None = None,
    order_dir: str = Query(default="asc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    actor: ActorContext = Depends(get_actor),
):
    return orders_service.audit_trail.list_response(
        db, actor, order_id, field, order_dir, limit, offset
    )
