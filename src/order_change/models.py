from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base declarativa común para todos los modelos."""
    pass


# --- Auth (Usuarios/Roles) ---

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(200))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"User(id={self.id!r}, username={self.username!r})"


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(80), unique=True, nullable=False)  # p.ej. Gerente, Admin, Vendedor
    description: Mapped[str | None] = mapped_column(String(200))

    def __repr__(self) -> str:  # pragma: no cover
        return f"Role(id={self.id!r}, name={self.name!r})"


class UserRole(Base):
    __tablename__ = "user_roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    role_id: Mapped[int] = mapped_column(Integer, ForeignKey("roles.id"), nullable=False)


# --- Bancos (listado para Pago Móvil / Transferencias) ---

class Bank(Base):
    __tablename__ = "banks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    code: Mapped[str | None] = mapped_column(String(10))  # código SUDEBAN, p.ej. 0102
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:  # pragma: no cover
        return f"Bank(id={self.id!r}, name={self.name!r}, code={self.code!r})"


# --- Orders (Pedidos) ---

class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_number: Mapped[str] = mapped_column(String(50), nullable=False)
    current_total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"), nullable=False)

    # Vuelto
    cash_received: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    change_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    change_covered_by: Mapped[str | None] = mapped_column(String(20))  # company | agency | partial
    change_amount_company: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    change_amount_agency: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    change_method_company: Mapped[str | None] = mapped_column(String(40))
    change_method_agency: Mapped[str | None] = mapped_column(String(40))
    change_rate: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))  # Bs por divisa; no se sobrescribe si ya es > 0
    change_payment_details: Mapped[str | None] = mapped_column(Text)  # JSON del detalle de liquidación
    change_receipt: Mapped[str | None] = mapped_column(String(500))  # ruta/ref del comprobante

    processed_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    payments: Mapped[List["OrderPayment"]] = relationship(
        "OrderPayment", back_populates="order", cascade="all, delete-orphan", order_by="OrderPayment.position"
    )
    payment_receipts: Mapped[List["PaymentReceipt"]] = relationship(
        "PaymentReceipt", back_populates="order", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"Order(id={self.id!r}, order_number={self.order_number!r}, total={self.current_total_price!r})"


class OrderPayment(Base):
    __tablename__ = "order_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    method: Mapped[str] = mapped_column(String(40), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)  # siempre USD
    rate: Mapped[Decimal | None] = mapped_column(Numeric(14, 4))  # informativo para métodos en Bs

    order: Mapped["Order"] = relationship("Order", back_populates="payments")

    def __repr__(self) -> str:  # pragma: no cover
        return f"OrderPayment(id={self.id!r}, method={self.method!r}, amount={self.amount!r})"


class PaymentReceipt(Base):
    __tablename__ = "payment_receipts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[int] = mapped_column(Integer, ForeignKey("orders.id"), nullable=False)
    path: Mapped[str] = mapped_column(String(500), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="payment_receipts")
