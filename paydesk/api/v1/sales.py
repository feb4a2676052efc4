"""Sales endpoints - recording, reading and deleting sales"""

from fastapi import APIRouter, Depends, Request, Response

from paydesk.api.dependencies import get_request_id, get_sales_service
from paydesk.api.v1.errors import http_error
from paydesk.api.v1.schemas import ProductResponse, RestockRequest, SaleRequest, SaleResponse
from paydesk.domain.models import SaleLine
from paydesk.services.sales_service import SalesService

router = APIRouter()


@router.post("/sales", response_model=SaleResponse, status_code=201)
def create_sale(
    request_body: SaleRequest,
    request: Request,
    sales: SalesService = Depends(get_sales_service),
):
    """
    Record a sale with its lines.

    Installment sales get a monthly or weekly plan; the first advance_installments
    are paid up front. Sold products are checked for low stock afterwards.
    """
    request_id = get_request_id(request)
    lines = [
        SaleLine(
            product_id=item.product_id,
            quantity=item.quantity,
            unit_price_cents=item.unit_price_cents,
            product_name=item.product_name,
        )
        for item in request_body.items
    ]
    try:
        sale = sales.record_sale(
            customer_id=request_body.customer_id,
            items=lines,
            payment_type=request_body.payment_type,
            number_of_installments=request_body.number_of_installments,
            advance_installments=request_body.advance_installments,
            first_due_date=request_body.first_due_date,
            notes=request_body.notes,
            period_type=request_body.period_type,
            payment_period=request_body.payment_period,
        )
    except Exception as e:
        raise http_error(e, request_id)

    return SaleResponse.from_domain(sale)


@router.get("/sales/{sale_id}", response_model=SaleResponse)
def get_sale(sale_id: int, request: Request, sales: SalesService = Depends(get_sales_service)):
    try:
        return SaleResponse.from_domain(sales.get_sale(sale_id))
    except Exception as e:
        raise http_error(e, get_request_id(request))


@router.delete("/sales/{sale_id}", status_code=204)
def delete_sale(sale_id: int, request: Request, sales: SalesService = Depends(get_sales_service)):
    """Delete a sale; its installments and payment transactions go with it"""
    try:
        sales.delete_sale(sale_id)
    except Exception as e:
        raise http_error(e, get_request_id(request))
    return Response(status_code=204)


@router.post("/products/{product_id}/restock", response_model=ProductResponse)
def restock_product(
    product_id: int,
    request_body: RestockRequest,
    request: Request,
    sales: SalesService = Depends(get_sales_service),
):
    try:
        product = sales.restock(product_id, request_body.quantity)
    except Exception as e:
        raise http_error(e, get_request_id(request))

    return ProductResponse(
        product_id=product.id,
        name=product.name,
        price_cents=product.price_cents,
        category=product.category,
        stock=product.stock,
    )
