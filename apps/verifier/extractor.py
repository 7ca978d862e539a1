"""
SIMRS Extractor - Today's BPJS Outpatient Visits

Reads today's outpatient registrations paid by BPJS from the hospital
information system (MySQL) and maps them to Visit records.
"""

import asyncio
import logging
from typing import Any

import mysql.connector

from utils.config import settings
from utils.schemas import Visit

logger = logging.getLogger(__name__)

TODAY_VISITS_QUERY = """
    SELECT a.no_rawat, c.no_peserta, d.kddpjp, e.nm_poli
    FROM reg_periksa AS a
    INNER JOIN pasien AS c ON a.no_rkm_medis = c.no_rkm_medis
    INNER JOIN maping_poli_bpjs AS b ON a.kd_poli = b.kd_poli_rs
    INNER JOIN bridging_sep AS d ON a.no_rawat = d.no_rawat
    INNER JOIN poliklinik AS e ON a.kd_poli = e.kd_poli
    WHERE a.kd_pj = 'BPJ'
      AND a.tgl_registrasi = CURDATE()
      AND a.status_lanjut = 'Ralan'
      AND c.no_peserta <> ''
    GROUP BY a.kd_poli
"""


def row_to_visit(row: dict[str, Any]) -> Visit:
    return Visit(
        visit_number=row["no_rawat"],
        member_id=row["no_peserta"],
        doctor_code=row["kddpjp"],
        clinic_name=row["nm_poli"] or "",
    )


def fetch_today_visits_blocking() -> list[Visit]:
    """
    Query SIMRS for today's visits.

    Raises:
        mysql.connector.Error: If the database cannot be queried
    """
    conn = mysql.connector.connect(
        host=settings.SIMRS_DB_HOST,
        port=settings.SIMRS_DB_PORT,
        user=settings.SIMRS_DB_USER,
        password=settings.SIMRS_DB_PASSWORD,
        database=settings.SIMRS_DB_NAME,
    )
    try:
        cursor = conn.cursor(dictionary=True)
        try:
            cursor.execute(TODAY_VISITS_QUERY)
            rows = cursor.fetchall()
        finally:
            cursor.close()
    finally:
        conn.close()

    visits = [row_to_visit(row) for row in rows]
    logger.debug("Fetched %d visits from SIMRS", len(visits))
    return visits


async def fetch_today_visits() -> list[Visit]:
    """Async wrapper; the MySQL connector is blocking."""
    return await asyncio.to_thread(fetch_today_visits_blocking)
