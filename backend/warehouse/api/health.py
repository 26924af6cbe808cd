from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from warehouse.db.database import get_db
from warehouse.core.config import settings, logger

router = APIRouter()


@router.get('/healthz')
def healthz():
    return {"status": "ok", "service": settings.APP_NAME}


@router.get('/readyz')
async def readyz(db: AsyncSession = Depends(get_db)):
    # Check DB connectivity
    try:
        await db.execute(text('SELECT 1'))
    except Exception:
        logger.exception('Readiness DB check failed')
        raise HTTPException(status_code=503, detail='Not ready')

    if not settings.warehouse_address_complete:
        logger.warning('Warehouse ship-from address is incomplete; label purchase will fail')

    return {"status": "ready"}
