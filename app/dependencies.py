from typing import Dict
from fastapi import Depends, HTTPException, status, Request
from sqlalchemy.orm import Session
import base64

from app.core.database import get_db
from app.services.audit_log import AuditLog
from app.services.item_store import ItemStore
from app.services.queries import WorkflowQueries
from app.services.workflow_service import WorkflowService


async def get_current_user(request: Request) -> Dict:
    def decode_header_value(value: str) -> str:
        if not value:
            return ""
        if value.startswith("base64:"):
            encoded = value[7:]
            try:
                return base64.b64decode(encoded).decode('utf-8')
            except ValueError:
                return value
        return value

    user_id = decode_header_value(request.headers.get("X-User-Id", ""))
    user_email = decode_header_value(request.headers.get("X-User-Email", ""))
    user_role = decode_header_value(request.headers.get("X-User-Role", ""))
    is_active = request.headers.get("X-User-Is-Active", "false").lower() == "true"

    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user"
        )

    return {
        "id": user_id,
        "email": user_email or "",
        "role": user_role or "",
        "is_active": is_active
    }


def get_workflow_service(db: Session = Depends(get_db)) -> WorkflowService:
    return WorkflowService(ItemStore(db), AuditLog(db))


def get_workflow_queries(db: Session = Depends(get_db)) -> WorkflowQueries:
    return WorkflowQueries(db)
