"""Installment ledger endpoints - payments, reversals, late fees and rescheduling"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from paydesk.api.dependencies import get_ledger, get_request_id, get_settings
from paydesk.api.v1.errors import http_error
from paydesk.api.v1.schemas import (
    CreateInstallmentRequest,
    InstallmentSchema,
    LateFeeRequest,
    PaymentRequest,
    PaymentResponse,
    RescheduleRequest,
    TransactionSchema,
)
from paydesk.config import Settings
from paydesk.domain.installments import validate_sequential_payment
from paydesk.services.installment_ledger import InstallmentLedger

router = APIRouter()


@router.get("/sales/{sale_id}/installments", response_model=List[InstallmentSchema])
def list_installments(sale_id: int, request: Request, ledger: InstallmentLedger = Depends(get_ledger)):
    try:
        installments = ledger.list_by_sale(sale_id)
    except Exception as e:
        raise http_error(e, get_request_id(request))
    return [InstallmentSchema.from_domain(inst) for inst in installments]


@router.post("/sales/{sale_id}/installments", response_model=InstallmentSchema, status_code=201)
def create_installment(
    sale_id: int,
    request_body: CreateInstallmentRequest,
    request: Request,
    ledger: InstallmentLedger = Depends(get_ledger),
):
    try:
        installment = ledger.create_installment(
            sale_id, request_body.installment_number, request_body.due_date, request_body.amount_cents
        )
    except Exception as e:
        raise http_error(e, get_request_id(request))
    return InstallmentSchema.from_domain(installment)


@router.post("/sales/{sale_id}/installments/roll-forward", response_model=Optional[InstallmentSchema])
def roll_forward(sale_id: int, request: Request, ledger: InstallmentLedger = Depends(get_ledger)):
    """
    Move the next unpaid installment to one month after the latest payment.

    Returns null when nothing has been paid yet or nothing is left to pay.
    """
    try:
        installment = ledger.roll_forward_next_pending(sale_id)
    except Exception as e:
        raise http_error(e, get_request_id(request))
    return InstallmentSchema.from_domain(installment) if installment else None


@router.get("/installments/{installment_id}", response_model=InstallmentSchema)
def get_installment(installment_id: int, request: Request, ledger: InstallmentLedger = Depends(get_ledger)):
    try:
        return InstallmentSchema.from_domain(ledger.get_installment(installment_id))
    except Exception as e:
        raise http_error(e, get_request_id(request))


@router.post("/installments/{installment_id}/payments", response_model=PaymentResponse, status_code=201)
def record_payment(
    installment_id: int,
    request_body: PaymentRequest,
    request: Request,
    ledger: InstallmentLedger = Depends(get_ledger),
    settings: Settings = Depends(get_settings),
):
    """
    Apply a payment to an installment.

    Flow:
    1. Optionally refuse while an earlier installment of the sale is unpaid
    2. Apply the amount and append a completed transaction in one commit
    """
    request_id = get_request_id(request)
    enforce = request_body.enforce_sequence
    if enforce is None:
        enforce = settings.enforce_sequential_payments

    try:
        if enforce:
            target = ledger.get_installment(installment_id)
            siblings = ledger.list_by_sale(target.sale_id)
            if not validate_sequential_payment(siblings, target.installment_number):
                raise HTTPException(
                    status_code=409,
                    detail="An earlier installment of this sale is still unpaid",
                )

        installment, transaction = ledger.record_payment(
            installment_id,
            request_body.amount_cents,
            method=request_body.payment_method,
            reference=request_body.payment_reference,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise http_error(e, request_id)

    return PaymentResponse(
        installment=InstallmentSchema.from_domain(installment),
        transaction=TransactionSchema.from_domain(transaction),
    )


@router.post(
    "/installments/{installment_id}/payments/{transaction_id}/revert",
    response_model=PaymentResponse,
)
def revert_payment(
    installment_id: int,
    transaction_id: int,
    request: Request,
    ledger: InstallmentLedger = Depends(get_ledger),
):
    try:
        installment, transaction = ledger.revert_payment(installment_id, transaction_id)
    except Exception as e:
        raise http_error(e, get_request_id(request))

    return PaymentResponse(
        installment=InstallmentSchema.from_domain(installment),
        transaction=TransactionSchema.from_domain(transaction),
    )


@router.post("/installments/{installment_id}/mark-paid", response_model=InstallmentSchema)
def mark_paid(installment_id: int, request: Request, ledger: InstallmentLedger = Depends(get_ledger)):
    """Settle without recording a transaction (manual reconciliation)"""
    try:
        return InstallmentSchema.from_domain(ledger.mark_as_paid(installment_id))
    except Exception as e:
        raise http_error(e, get_request_id(request))


@router.post("/installments/{installment_id}/late-fee", response_model=InstallmentSchema)
def apply_late_fee(
    installment_id: int,
    request_body: LateFeeRequest,
    request: Request,
    ledger: InstallmentLedger = Depends(get_ledger),
):
    try:
        return InstallmentSchema.from_domain(ledger.apply_late_fee(installment_id, request_body.fee_cents))
    except Exception as e:
        raise http_error(e, get_request_id(request))


@router.post("/installments/{installment_id}/cancel", response_model=InstallmentSchema)
def cancel_installment(installment_id: int, request: Request, ledger: InstallmentLedger = Depends(get_ledger)):
    try:
        return InstallmentSchema.from_domain(ledger.cancel_installment(installment_id))
    except Exception as e:
        raise http_error(e, get_request_id(request))


@router.post("/installments/{installment_id}/reschedule", response_model=InstallmentSchema)
def reschedule(
    installment_id: int,
    request_body: RescheduleRequest,
    request: Request,
    ledger: InstallmentLedger = Depends(get_ledger),
):
    try:
        return InstallmentSchema.from_domain(ledger.reschedule(installment_id, request_body.due_date))
    except Exception as e:
        raise http_error(e, get_request_id(request))


@router.get("/installments/{installment_id}/transactions", response_model=List[TransactionSchema])
def list_transactions(installment_id: int, request: Request, ledger: InstallmentLedger = Depends(get_ledger)):
    try:
        transactions = ledger.list_transactions(installment_id)
    except Exception as e:
        raise http_error(e, get_request_id(request))
    return [TransactionSchema.from_domain(tx) for tx in transactions]
