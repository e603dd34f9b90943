"""Modèles Pydantic du registre de stock, des sorties et des achats."""
from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class MovementReason(str, enum.Enum):
    purchase = "purchase"
    return_ = "return"
    issue = "issue"
    adjustment = "adjustment"
    transfer = "transfer"
    repair = "repair"
    other = "other"
    deletion_reversal = "deletion-reversal"
    reception = "reception"


class ExitType(str, enum.Enum):
    utilisation_vehicule = "utilisation_vehicule"
    location_accessoire = "location_accessoire"
    consommation = "consommation"
    perte_casse = "perte_casse"
    autre = "autre"


class ExitStatus(str, enum.Enum):
    active = "active"
    deleted = "deleted"


class ReturnStatus(str, enum.Enum):
    en_cours = "en_cours"
    retourne_ok = "retourne_ok"
    retourne_endommage = "retourne_endommage"
    non_retourne = "non_retourne"


class ReturnOutcome(str, enum.Enum):
    ok = "ok"
    damaged = "damaged"
    not_returned = "not_returned"


class ExitState(str, enum.Enum):
    """Etat combiné (statut + sous-état de retour) d'une sortie."""

    untracked = "active:no-return-tracking"
    en_cours = "active:en_cours"
    retourne_ok = "active:retourne_ok"
    retourne_endommage = "active:retourne_endommage"
    non_retourne = "active:non_retourne"
    deleted = "deleted"

    @classmethod
    def from_row(cls, status: str, return_status: str | None) -> "ExitState":
        if status == ExitStatus.deleted.value:
            return cls.deleted
        if return_status is None:
            return cls.untracked
        return cls(f"active:{return_status}")


class EntryType(str, enum.Enum):
    achat = "achat"
    retour = "retour"
    transfert = "transfert"
    ajustement = "ajustement"
    reparation = "reparation"
    autre = "autre"


class OrderStatus(str, enum.Enum):
    brouillon = "brouillon"
    envoye = "envoye"
    confirme = "confirme"
    recu_partiel = "recu_partiel"
    recu_complet = "recu_complet"
    annule = "annule"


class Actor(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    role: str = "magasinier"


# ---------- Référentiel ----------
class SupplierCreate(BaseModel):
    nom: str = Field(..., min_length=1, max_length=255)
    email: Optional[str] = None
    telephone: Optional[str] = None
    adresse: Optional[str] = None
    actif: bool = True


class Supplier(SupplierCreate):
    id: int


class ArticleCreate(BaseModel):
    reference: str = Field(..., min_length=1, max_length=64)
    designation: str = Field(..., min_length=1, max_length=255)
    categorie: Optional[str] = None
    marque: Optional[str] = None
    stock: int = Field(default=0, ge=0)
    stock_min: int = Field(default=0, ge=0)
    stock_max: int = Field(default=0, ge=0)
    prix_achat: float = Field(default=0.0, ge=0)
    fournisseur_id: Optional[int] = None


class Article(BaseModel):
    id: int
    reference: str
    designation: str
    categorie: str | None = None
    marque: str | None = None
    stock: int
    stock_min: int = 0
    stock_max: int = 0
    prix_achat: float = 0.0
    fournisseur_id: int | None = None


class SupplierLinkCreate(BaseModel):
    fournisseur_id: int
    prix_fournisseur: Optional[float] = Field(default=None, ge=0)
    est_principal: bool = False
    actif: bool = True
    quantite_minimum: Optional[int] = Field(default=None, ge=1)
    reference_fournisseur: Optional[str] = None


class SupplierLink(SupplierLinkCreate):
    id: int
    article_id: int


# ---------- Registre ----------
class LedgerEntry(BaseModel):
    id: int
    article_id: int
    delta: int
    reason: str
    actor: str
    exit_id: int | None = None
    entry_id: int | None = None
    order_id: int | None = None
    note: str | None = None
    created_at: datetime


class StockAdjustment(BaseModel):
    delta: int
    reason: MovementReason = MovementReason.adjustment
    note: Optional[str] = None
    allow_negative: bool = False


class StockAdjustResult(BaseModel):
    article_id: int
    new_stock: int
    ledger_entry_id: int


class InventoryCount(BaseModel):
    counted: int = Field(..., ge=0)
    note: Optional[str] = None


class LedgerCheck(BaseModel):
    article_id: int
    cached_stock: int
    ledger_total: int
    consistent: bool


# ---------- Sorties ----------
class ExitLineCreate(BaseModel):
    article_id: int
    quantity: int = Field(..., gt=0)


class ExitLine(BaseModel):
    id: int
    article_id: int
    quantity: int
    designation: str | None = None


class StockExitCreate(BaseModel):
    exit_type: ExitType
    lines: list[ExitLineCreate] = Field(..., min_length=1)
    client_name: Optional[str] = None
    vehicule_id: Optional[str] = None
    department: Optional[str] = None
    notes: Optional[str] = None
    caution_amount: Optional[float] = Field(default=None, ge=0)
    expected_return_date: Optional[date] = None


class StockExit(BaseModel):
    id: int
    exit_number: str
    exit_type: ExitType
    status: ExitStatus
    return_status: ReturnStatus | None = None
    state: ExitState
    lines: list[ExitLine] = Field(default_factory=list)
    client_name: str | None = None
    vehicule_id: str | None = None
    department: str | None = None
    notes: str | None = None
    caution_amount: float | None = None
    expected_return_date: date | None = None
    actual_return_date: datetime | None = None
    damage_description: str | None = None
    reimbursement_amount: float | None = None
    created_by: str
    created_at: datetime
    deleted_at: datetime | None = None
    deleted_by: str | None = None
    deleted_reason: str | None = None
    deletable: bool = False
    overdue: bool = False


class ReturnPayload(BaseModel):
    outcome: ReturnOutcome
    damage_description: Optional[str] = None
    reimbursement_amount: Optional[float] = Field(default=None, ge=0)


class DeletionPayload(BaseModel):
    reason: str = ""


# ---------- Entrées ----------
class EntryLineCreate(BaseModel):
    article_id: int
    quantity: int = Field(..., gt=0)
    unit_price: float = Field(default=0.0, ge=0)


class EntryLine(EntryLineCreate):
    id: int


class StockEntryCreate(BaseModel):
    entry_type: EntryType
    lines: list[EntryLineCreate] = Field(..., min_length=1)
    supplier_id: Optional[int] = None
    invoice_number: Optional[str] = None
    notes: Optional[str] = None


class StockEntry(BaseModel):
    id: int
    entry_number: str
    entry_type: EntryType
    status: ExitStatus
    supplier_id: int | None = None
    invoice_number: str | None = None
    notes: str | None = None
    total_amount: float = 0.0
    lines: list[EntryLine] = Field(default_factory=list)
    created_by: str
    created_at: datetime
    deleted_at: datetime | None = None
    deleted_by: str | None = None
    deleted_reason: str | None = None


# ---------- Commandes ----------
class OrderLineInput(BaseModel):
    article_id: int
    quantity: int = Field(..., gt=0)
    unit_price: Optional[float] = Field(default=None, ge=0)
    designation: Optional[str] = None
    reference: Optional[str] = None


class OrderLine(BaseModel):
    id: int
    commande_id: int
    article_id: int | None = None
    designation: str
    reference: str | None = None
    quantite_commandee: int
    quantite_recue: int = 0
    prix_unitaire: float
    total_ligne: float


class PurchaseOrder(BaseModel):
    id: int
    numero_commande: str
    fournisseur: str
    fournisseur_id: int | None = None
    email_fournisseur: str | None = None
    telephone_fournisseur: str | None = None
    adresse_fournisseur: str | None = None
    status: OrderStatus
    tva_taux: float
    total_ht: float
    total_ttc: float
    notes: str | None = None
    source: str | None = None
    created_by: str
    created_at: datetime
    date_envoi: datetime | None = None
    date_reception_reelle: datetime | None = None
    lines: list[OrderLine] = Field(default_factory=list)


class DraftMergeRequest(BaseModel):
    supplier_name: str = Field(..., min_length=1, max_length=255)
    lines: list[OrderLineInput] = Field(..., min_length=1)
    force_new: bool = False
    notes: Optional[str] = None
    source: Optional[str] = "manuel"

    @field_validator("supplier_name")
    @classmethod
    def _strip_supplier_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("Nom de fournisseur vide")
        return stripped


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderLineUpdate(BaseModel):
    quantity: Optional[int] = Field(default=None, gt=0)
    unit_price: Optional[float] = Field(default=None, ge=0)


class ReceptionLine(BaseModel):
    line_id: int
    quantity: int = Field(..., ge=0)


class ReceptionPayload(BaseModel):
    lines: list[ReceptionLine] = Field(..., min_length=1)


# ---------- Approvisionnement ----------
class ShortageDemand(BaseModel):
    article_id: int
    required: int = Field(..., ge=0)


class RevisionPart(BaseModel):
    article_id: int
    quantity_per_unit: int = Field(..., gt=0)


class RevisionRequest(BaseModel):
    units: int = Field(..., gt=0)
    parts: list[RevisionPart] = Field(..., min_length=1)
    force_new: bool = False


class ProcurementRequest(BaseModel):
    demands: list[ShortageDemand] = Field(default_factory=list)
    force_new: bool = False


class LowStockRequest(BaseModel):
    force_new: bool = False


SupplierSource = Literal["principal", "first_active", "legacy"]


class SupplierResolution(BaseModel):
    article_id: int
    supplier_id: int
    supplier_name: str
    source: SupplierSource
    prix_fournisseur: float | None = None
    quantite_minimum: int | None = None


class ProcurementLine(BaseModel):
    article_id: int
    reference: str
    designation: str
    required: int
    on_hand: int
    missing: int
    quantity: int
    unit_price: float
    total_ligne: float


class OrderGroup(BaseModel):
    supplier_id: int
    supplier_name: str
    email: str | None = None
    telephone: str | None = None
    adresse: str | None = None
    status: OrderStatus = OrderStatus.brouillon
    lines: list[ProcurementLine] = Field(default_factory=list)
    tva_taux: float
    total_ht: float = 0.0
    total_ttc: float = 0.0


class UnresolvedSupplier(BaseModel):
    code: Literal["UNRESOLVED_SUPPLIER"] = "UNRESOLVED_SUPPLIER"
    article_id: int
    reference: str
    designation: str
    missing: int


class ProcurementPlan(BaseModel):
    groups: list[OrderGroup] = Field(default_factory=list)
    unresolved: list[UnresolvedSupplier] = Field(default_factory=list)


class ProcurementResult(BaseModel):
    orders: list[PurchaseOrder] = Field(default_factory=list)
    unresolved: list[UnresolvedSupplier] = Field(default_factory=list)
