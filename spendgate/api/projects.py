"""Project and client administration APIs."""
from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends

from spendgate.core.database import get_db
from spendgate.models.projects import ClientCreate, ClientUpdate, ProjectCreate, ProjectUpdate
from spendgate.services.auth import verify_api_key
from spendgate.services.errors import NotFoundError

router = APIRouter(prefix="/api", tags=["projects"], dependencies=[Depends(verify_api_key)])


def _with_client(project: Dict[str, Any]) -> Dict[str, Any]:
    project["client"] = get_db().get_client(project["client_id"])
    return project


# ==================== CLIENTS ====================

@router.get("/clients")
def list_clients() -> List[Dict[str, Any]]:
    return get_db().list_clients()


@router.post("/clients")
def create_client(request: ClientCreate):
    return get_db().create_client(**request.model_dump())


@router.get("/clients/{client_id}")
def get_client(client_id: str):
    client = get_db().get_client(client_id)
    if not client:
        raise NotFoundError("client", client_id)
    return client


@router.put("/clients/{client_id}")
def update_client(client_id: str, request: ClientUpdate):
    db = get_db()
    if not db.get_client(client_id):
        raise NotFoundError("client", client_id)
    return db.update_client(client_id, **request.model_dump(exclude_unset=True))


# ==================== PROJECTS ====================

@router.get("/projects")
def list_projects() -> List[Dict[str, Any]]:
    db = get_db()
    clients = {client["id"]: client for client in db.list_clients()}
    projects = db.list_projects()
    for project in projects:
        project["client"] = clients.get(project["client_id"])
    return projects


@router.post("/projects")
def create_project(request: ProjectCreate):
    db = get_db()
    if not db.get_client(request.client_id):
        raise NotFoundError("client", request.client_id)
    payload = request.model_dump(mode="json")
    return _with_client(db.create_project(**payload))


@router.get("/projects/{project_id}")
def get_project(project_id: str):
    project = get_db().get_project(project_id)
    if not project:
        raise NotFoundError("project", project_id)
    return _with_client(project)


@router.put("/projects/{project_id}")
def update_project(project_id: str, request: ProjectUpdate):
    db = get_db()
    updates = request.model_dump(mode="json", exclude_unset=True)
    if updates.get("client_id") and not db.get_client(updates["client_id"]):
        raise NotFoundError("client", updates["client_id"])
    project = db.update_project(project_id, **updates)
    if not project:
        raise NotFoundError("project", project_id)
    return _with_client(project)
