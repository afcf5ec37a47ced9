from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from pathlib import Path
import json
import os
import uuid

app = FastAPI(title="Mock Payout Server", version="1.0.0")
# Support both local development and Docker
DATA_DIR = Path("/payout_stub") if os.path.exists("/payout_stub") else Path(__file__).resolve().parents[2] / "payout_stub"


def _stub():
    return json.loads((DATA_DIR / "accounts.json").read_text())


def _find_account(bank_code: str, account_no: str):
    for account in _stub()["accounts"]:
        if account["bank_code"] == bank_code and account["account_no"] == account_no:
            return account
    return None


class BankPayout(BaseModel):
    amount: str
    currency: str
    account_no: str
    account_name: str
    bank_code: str
    reference: str
    narration: str = ""
    provider: str = ""


@app.get("/health")
def health(): return {"status": "ok"}

@app.get("/banks/resolve")
def resolve_account(bank_code: str, account_no: str, provider: str = ""):
    account = _find_account(bank_code, account_no)
    if account is None:
        raise HTTPException(status_code=404, detail="account not found")
    return {
        "account_name": account["account_name"],
        "account_no": account["account_no"],
        "bank_code": account["bank_code"],
        "bank_name": _stub()["banks"].get(bank_code, ""),
        "platform_code": account["platform_code"],
    }

@app.post("/payouts/bank")
def bank_payout(payout: BankPayout):
    account = _find_account(payout.bank_code, payout.account_no)
    behaviour = account.get("payout", "successful") if account else "successful"
    if behaviour == "unavailable":
        raise HTTPException(status_code=503, detail="provider unavailable")
    if behaviour == "failed":
        return {"status": "failed", "message": "beneficiary account is restricted", "reference": payout.reference}
    return {
        "status": "successful",
        "message": "transfer queued",
        "reference": payout.reference,
        "provider_reference": f"PO-{uuid.uuid4().hex[:12].upper()}",
    }
