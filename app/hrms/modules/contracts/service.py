"""
Employment contracts: issue, sign, decline and the expiry sweep.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from app.hrms.audit import record_event
from app.hrms.models import User
from app.hrms.tenancy import org_user
from app.hrms.utils import clean, parse_date, parse_datetime, parse_decimal, parse_int

from app.hrms.modules.notifications.service import hr_admins, notify, notify_many

from .models import EmploymentContract

logger = logging.getLogger(__name__)

CONTRACT_STATUSES = ("pending", "signed", "declined", "expired")
DEFAULT_EXPIRY_DAYS = 14


class ContractError(ValueError):
    pass


def validate_contract_payload(s: Session, payload: dict[str, Any], *, organization_id: str | None = None) -> list[str]:
    errors: list[str] = []
    user_id = parse_int(payload.get("user_id"))
    if not user_id:
        errors.append("Employee is required.")
    elif org_user(s, user_id, organization_id) is None:
        errors.append("Employee not found.")
    if not clean(payload.get("position")):
        errors.append("Position is required.")
    if not clean(payload.get("content")):
        errors.append("Contract content is required.")
    try:
        salary = parse_decimal(payload.get("salary"))
        if salary is not None and salary < 0:
            errors.append("Salary cannot be negative.")
    except ValueError:
        errors.append("Salary must be a number.")
    currency = clean(payload.get("currency"))
    if currency and len(currency) != 3:
        errors.append("Currency must be a 3-letter code.")
    try:
        parse_date(payload.get("start_date"))
    except ValueError:
        errors.append("Start date must be YYYY-MM-DD.")
    try:
        expires = parse_datetime(payload.get("expires_at"))
        if expires is not None and expires <= datetime.utcnow():
            errors.append("Expiry must be in the future.")
    except ValueError:
        errors.append("Expiry must be an ISO date/time.")
    return errors


def create_contract(
    s: Session,
    payload: dict[str, Any],
    *,
    user: User,
    expiry_days: int = DEFAULT_EXPIRY_DAYS,
) -> EmploymentContract:
    now = datetime.utcnow()
    contract = EmploymentContract(
        user_id=parse_int(payload.get("user_id")),
        position=clean(payload.get("position")) or "",
        salary=parse_decimal(payload.get("salary")),
        currency=(clean(payload.get("currency")) or "USD").upper(),
        start_date=parse_date(payload.get("start_date")),
        content=clean(payload.get("content")) or "",
        status="pending",
        expires_at=parse_datetime(payload.get("expires_at")) or now + timedelta(days=expiry_days),
        created_by_user_id=user.id,
    )
    s.add(contract)
    s.flush()
    s.refresh(contract)
    notify(
        s,
        contract.user_id,
        type="contract_issued",
        title="Contract ready to sign",
        message=f"Your contract for {contract.position} is waiting for your signature.",
        entity_type="EmploymentContract",
        entity_id=contract.id,
    )
    record_event(s, actor=user, action="contract.create", entity_type="EmploymentContract", entity_id=contract.id, metadata={"user_id": contract.user_id})
    return contract


def is_expired(contract: EmploymentContract, *, now: datetime | None = None) -> bool:
    return contract.expires_at <= (now or datetime.utcnow())


def sign_contract(
    s: Session,
    contract: EmploymentContract,
    *,
    signature: str | None,
    user: User,
    ip_address: str | None = None,
    user_agent: str | None = None,
    now: datetime | None = None,
) -> EmploymentContract:
    now = now or datetime.utcnow()
    if contract.user_id != user.id:
        raise ContractError("Only the named employee can sign this contract.")
    if contract.status != "pending":
        raise ContractError(f"Contract is already {contract.status}.")
    if is_expired(contract, now=now):
        raise ContractError("This contract has expired. Ask HR to issue a new one.")
    signature = clean(signature)
    if not signature:
        raise ContractError("A signature is required.")

    contract.status = "signed"
    contract.signature = signature
    contract.signed_at = now
    contract.signed_ip = ip_address
    contract.signed_user_agent = user_agent
    contract.updated_at = now
    user.contract_signed = True
    user.contract_signed_at = now

    notify_many(
        s,
        [u.id for u in hr_admins(s, organization_id=user.organization_id)],
        type="contract_signed",
        title="Contract signed",
        message=f"{user.full_name} signed the contract for {contract.position}.",
        entity_type="EmploymentContract",
        entity_id=contract.id,
    )
    record_event(s, actor=user, action="contract.sign", entity_type="EmploymentContract", entity_id=contract.id, metadata={"ip": ip_address})
    return contract


def decline_contract(
    s: Session,
    contract: EmploymentContract,
    *,
    reason: str | None,
    user: User,
) -> EmploymentContract:
    if contract.user_id != user.id:
        raise ContractError("Only the named employee can decline this contract.")
    if contract.status != "pending":
        raise ContractError(f"Contract is already {contract.status}.")
    now = datetime.utcnow()
    contract.status = "declined"
    contract.declined_at = now
    contract.decline_reason = clean(reason)
    contract.updated_at = now
    notify_many(
        s,
        [u.id for u in hr_admins(s, organization_id=user.organization_id)] + [contract.created_by_user_id],
        type="contract_declined",
        title="Contract declined",
        message=f"{user.full_name} declined the contract for {contract.position}.",
        entity_type="EmploymentContract",
        entity_id=contract.id,
    )
    record_event(s, actor=user, action="contract.decline", entity_type="EmploymentContract", entity_id=contract.id, reason=contract.decline_reason)
    return contract


def list_contracts(
    s: Session,
    *,
    user: User,
    organization_id: str | None = None,
    include_all: bool = False,
    status: str | None = None,
    user_id: int | None = None,
) -> list[EmploymentContract]:
    q = s.query(EmploymentContract).filter(EmploymentContract.in_org(organization_id))
    if not include_all:
        q = q.filter(EmploymentContract.user_id == user.id)
    elif user_id:
        q = q.filter(EmploymentContract.user_id == user_id)
    if status:
        q = q.filter(EmploymentContract.status == status)
    return q.order_by(EmploymentContract.created_at.desc(), EmploymentContract.id.desc()).all()


def expire_contracts(s: Session, *, now: datetime | None = None) -> list[EmploymentContract]:
    """Pending contracts past their expiry become expired."""
    now = now or datetime.utcnow()
    contracts = (
        s.query(EmploymentContract)
        .filter(EmploymentContract.status == "pending", EmploymentContract.expires_at <= now)
        .all()
    )
    for contract in contracts:
        contract.status = "expired"
        contract.updated_at = now
        notify_many(
            s,
            [contract.user_id, contract.created_by_user_id],
            type="contract_expired",
            title="Contract expired",
            message=f"The contract for {contract.position} expired unsigned.",
            entity_type="EmploymentContract",
            entity_id=contract.id,
        )
        record_event(s, actor=None, action="contract.expire", entity_type="EmploymentContract", entity_id=contract.id)
    s.flush()
    if contracts:
        logger.info("Expired %d contract(s)", len(contracts))
    return contracts
