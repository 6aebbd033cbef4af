"""FastAPI service for chat-based transaction capture, budgets and analytics."""

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Literal, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

import records
from analytics import DATE_FILTERS, GRANULARITIES, build_report
from budgets import compute_budget_status, period_label
from chat_history import ChatHistoryStore, ChatSession
from database import get_db, init_db
from extraction import (
    Candidate,
    ChatTurn,
    ConfigurationError,
    GeminiClient,
    GenerationClient,
    Media,
    UpstreamServiceError,
    extract_transaction,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(title="Chat Finance Tracker", version="0.1.0", lifespan=lifespan)


def get_generation_client() -> GenerationClient:
    return GeminiClient()


def get_history_store() -> ChatHistoryStore:
    return ChatHistoryStore()


def current_user(x_user_id: str = Header(...)) -> str:
    if not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id.strip()


# --- Chat ---

class ChatRequest(BaseModel):
    message: Optional[str] = None
    data: Optional[str] = Field(None, description="Base64 media payload (image or audio)")
    mime_type: Optional[str] = None


class ChatResponse(BaseModel):
    reply: str
    transaction: Optional[Candidate]
    saved: bool
    source: str


def _turn_from_request(req: ChatRequest) -> ChatTurn:
    media = None
    if req.data and req.mime_type:
        payload = req.data.split(",", 1)[1] if req.data.startswith("data:") else req.data
        try:
            media = Media(data=base64.b64decode(payload, validate=True), mime_type=req.mime_type)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="Invalid media payload")
    try:
        return ChatTurn(message=req.message, media=media)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@app.post("/chat", response_model=ChatResponse)
def chat(
    req: ChatRequest,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
    client: GenerationClient = Depends(get_generation_client),
    history: ChatHistoryStore = Depends(get_history_store),
):
    turn = _turn_from_request(req)
    try:
        result = extract_transaction(turn, client)
    except (ConfigurationError, UpstreamServiceError) as exc:
        raise HTTPException(status_code=500, detail=str(exc))

    saved = False
    if result.transaction is not None:
        saved = records.save_candidate(db, user_id, result.transaction, result.source).saved

    session = ChatSession.open(history, user_id)
    session.add_user_turn(turn)
    session.add_assistant_reply(result, saved)
    session.save()

    return ChatResponse(reply=result.reply, transaction=result.transaction, saved=saved, source=result.source)


@app.get("/chat/history")
def get_chat_history(user_id: str = Depends(current_user), history: ChatHistoryStore = Depends(get_history_store)):
    return {"messages": [m.model_dump(mode="json") for m in history.load(user_id)]}


@app.delete("/chat/history")
def clear_chat_history(user_id: str = Depends(current_user), history: ChatHistoryStore = Depends(get_history_store)):
    return {"success": history.clear(user_id)}


# --- Transactions ---

class TransactionIn(BaseModel):
    type: Literal["income", "expense"]
    category: str
    amount: int = Field(..., ge=0)
    description: str = ""
    date: Optional[datetime] = None


class TransactionPatch(BaseModel):
    type: Optional[Literal["income", "expense"]] = None
    category: Optional[str] = None
    amount: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None
    date: Optional[datetime] = None


@app.get("/transactions")
def list_transactions(
    type: Optional[Literal["income", "expense"]] = None,
    category: Optional[str] = None,
    limit: Optional[int] = None,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    txns = records.list_transactions(db, user_id, type=type, category=category, limit=limit)
    return {"transactions": [t.to_dict() for t in txns]}


@app.post("/transactions", status_code=201)
def create_transaction(req: TransactionIn, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    txn = records.add_transaction(db, user_id, source="manual", **req.model_dump())
    return {"transaction": txn.to_dict()}


@app.patch("/transactions/{txn_id}")
def update_transaction(
    txn_id: int,
    req: TransactionPatch,
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    txn = records.update_transaction(db, user_id, txn_id, req.model_dump(exclude_unset=True))
    if txn is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return {"transaction": txn.to_dict()}


@app.delete("/transactions/{txn_id}")
def delete_transaction(txn_id: int, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    if not records.delete_transaction(db, user_id, txn_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    return {"success": True}


# --- Budgets ---

class BudgetIn(BaseModel):
    category: Optional[str] = None
    amount: Optional[float] = None
    period: Optional[str] = "monthly"


@app.get("/budgets")
def list_budgets(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    budgets = records.list_budgets(db, user_id)
    statuses = compute_budget_status(budgets, records.list_transactions(db, user_id))
    return {
        "budgets": [
            {**s.to_dict(), "period_label": period_label(s.period)}
            for s in statuses
        ]
    }


@app.post("/budgets")
def upsert_budget(req: BudgetIn, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    try:
        budget = records.upsert_budget(db, user_id, req.category, req.amount, req.period)
    except records.BudgetValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"budget": budget.to_dict()}


@app.delete("/budgets/{category}")
def delete_budget(category: str, user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    if not records.delete_budget(db, user_id, category):
        raise HTTPException(status_code=404, detail="Budget not found")
    return {"success": True}


# --- Analytics ---

@app.get("/analytics")
def get_analytics(
    date_filter: str = "30d",
    start: Optional[date] = None,
    end: Optional[date] = None,
    granularity: str = "daily",
    trend_type: Literal["income", "expense"] = "expense",
    user_id: str = Depends(current_user),
    db: Session = Depends(get_db),
):
    if date_filter not in DATE_FILTERS:
        raise HTTPException(status_code=400, detail=f"date_filter must be one of {', '.join(DATE_FILTERS)}")
    if granularity not in GRANULARITIES:
        raise HTTPException(status_code=400, detail=f"granularity must be one of {', '.join(GRANULARITIES)}")

    txns = records.list_transactions(db, user_id)
    return build_report(txns, date_filter, start, end, granularity, trend_type)


# --- Settings ---

@app.get("/settings/export")
def export_transactions(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    try:
        content = records.export_transactions_csv(db, user_id)
    except records.NothingToExportError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    filename = f"transactions_export_{date.today().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.delete("/settings/data")
def delete_all_data(user_id: str = Depends(current_user), db: Session = Depends(get_db)):
    deleted = records.delete_all_transactions(db, user_id)
    return {"success": True, "deleted": deleted}


@app.get("/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=True)
