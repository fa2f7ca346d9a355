"""
mock_email_function.py — Mock Implementation of the Order Email Function (REST API)

This module simulates the serverless function that sends the new-order email
to the merchant through a transactional email provider.

Simulation Scenarios:
    • Successful send
    • Provider rejection (HTTP 500) — recipient starting with "fail"
    • Slow provider (simulates client read timeout) — recipient starting with "slow"

Endpoints:
    POST /functions/v1/send-order-email

Port:
    Default: 8011 (HTTP)
"""

import logging
import time
from typing import List, Optional
import uuid

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

app = FastAPI(title="Mock Order Email Function")
logging.basicConfig(level=logging.INFO)

sent_emails = []


class EmailProduct(BaseModel):
    name: str
    price: float


class EmailItem(BaseModel):
    product: EmailProduct
    quantity: int


class EmailOrder(BaseModel):
    orderNumber: str
    customerName: str
    shopName: str
    city: str
    total: float
    items: List[EmailItem]
    notes: Optional[str] = None
    date: str


class OrderEmailRequest(BaseModel):
    """
    Request payload of the email function.

    Attributes:
        order (EmailOrder): Order fields in camelCase.
        adminEmail (str): Recipient.
        subject (str, optional): Prepared subject line.
        html (str, optional): Prepared HTML body.
    """
    order: EmailOrder
    adminEmail: str
    subject: Optional[str] = None
    html: Optional[str] = None


@app.post("/functions/v1/send-order-email")
def send_order_email(request: OrderEmailRequest):
    order_number = request.order.orderNumber
    logging.info(f"[MAIL] Versandanfrage für Order {order_number} an {request.adminEmail}")

    if request.adminEmail.startswith("fail"):
        logging.warning(f"[MAIL] Provider lehnt E-Mail für {order_number} ab.")
        raise HTTPException(status_code=500, detail={"error": "provider rejected message"})

    if request.adminEmail.startswith("slow"):
        logging.info(f"[MAIL] Simuliere Timeout für {order_number}...")
        time.sleep(10)

    subject = request.subject or f"طلب جديد رقم {order_number} من {request.order.customerName}"
    message_id = f"msg_{uuid.uuid4()}"
    sent_emails.append({"id": message_id, "to": request.adminEmail, "subject": subject, "html": request.html})
    logging.info(f"[MAIL] E-Mail für {order_number} gesendet ({message_id}).")
    return {"id": message_id}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8011)
