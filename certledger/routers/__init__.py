# API Routers - CertLedger

from certledger.routers import credentials, health

__all__ = ["credentials", "health"]
