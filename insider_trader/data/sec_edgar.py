"""SEC EDGAR data fetcher for insider transactions (Form 4)."""
import re
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional
import requests
from insider_trader.data.transformers import Form4Parser, TransactionRecord
from insider_trader.utils.exceptions import DocumentFetchError, FilingSourceError
from insider_trader.utils.logging import get_logger
from insider_trader.utils import metrics
from config.settings import get_data_sources_config

logger = get_logger(__name__)

_DIGITS = re.compile(r'^\d+$')

class SECEdgarFetcher:
    """Fetches insider transactions (Form 4) from SEC EDGAR.

    Three steps per filing: the EFTS full-text search lists filing hits for a
    date window, each hit is resolved to its primary XML document, and the
    document is fetched and parsed into transaction records. Document fetches
    fan out over a fixed-width thread pool to stay inside SEC fair-access limits.
    """

    def __init__(self, session: Optional[requests.Session] = None, config: Optional[Dict] = None):
        config = config or get_data_sources_config()['sec_edgar']
        self.search_url = config['search_url']
        self.archives_url = config['archives_url'].rstrip('/')
        self.timeout = config.get('request_timeout_seconds', 30)
        self.max_concurrent_fetches = config.get('max_concurrent_fetches', 6)
        self.parser = Form4Parser(config.get('valid_transaction_codes', ['P', 'S', 'A', 'D']))
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': config['user_agent'],
            'Accept-Encoding': 'gzip, deflate',
        })

    # ---------- Search ----------

    @staticmethod
    def date_window(lookback_days: int, today: Optional[date] = None):
        """Search window ending yesterday (UTC); a 1-day window covers yesterday only."""
        today = today or datetime.now(timezone.utc).date()
        end = today - timedelta(days=1)
        start = end if lookback_days <= 1 else today - timedelta(days=lookback_days)
        return start, end

    def search_filings(self, lookback_days: int = 1, today: Optional[date] = None) -> List[str]:
        """Query EFTS for Form 4 filings in the lookback window.

        Returns:
            Raw hit ids, either an accession number or "{accession}:{filename}"

        Raises:
            FilingSourceError: network failure, non-2xx status, non-JSON body
                or a response without the expected hits structure
        """
        start, end = self.date_window(lookback_days, today)
        params = {
            'q': '"form 4"',
            'forms': '4',
            'dateRange': 'custom',
            'startdt': start.isoformat(),
            'enddt': end.isoformat(),
        }

        try:
            response = self.session.get(self.search_url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise FilingSourceError(f"EDGAR EFTS network error for {start}..{end}: {e}") from e

        if not response.ok:
            raise FilingSourceError(
                f"EDGAR EFTS request failed with HTTP {response.status_code} for {start}..{end}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise FilingSourceError(f"EDGAR EFTS returned non-JSON body for {start}..{end}") from e

        try:
            hits = body['hits']['hits']
            ids = [hit['_id'] for hit in hits]
        except (KeyError, TypeError) as e:
            raise FilingSourceError(f"EDGAR EFTS response shape mismatch for {start}..{end}: {e!r}") from e

        if not all(isinstance(i, str) and i for i in ids):
            raise FilingSourceError(f"EDGAR EFTS response shape mismatch for {start}..{end}: empty _id")

        logger.info("EDGAR search complete", start=str(start), end=str(end), hits=len(ids))
        return ids

    # ---------- Resolution ----------

    @staticmethod
    def cik_from_accession(accession: str) -> Optional[str]:
        """The first accession segment is the zero-padded filer CIK."""
        first = accession.split('-')[0]
        if not first or not _DIGITS.match(first):
            return None
        return str(int(first))

    def resolve_document_url(self, hit_id: str) -> str:
        """Resolve an EFTS hit id to the URL of its XML document.

        Fast path: modern ids embed the filename as "{accession}:{filename}".
        Fallback: fetch the filing index JSON and pick the first XML document.
        """
        if ':' in hit_id:
            accession, filename = hit_id.split(':', 1)
            cik = self.cik_from_accession(accession)
            if not cik:
                raise DocumentFetchError(f"Cannot derive CIK from {hit_id}")
            return f"{self.archives_url}/{cik}/{accession.replace('-', '')}/{filename}"

        accession = hit_id
        cik = self.cik_from_accession(accession)
        if not cik:
            raise DocumentFetchError(f"Cannot derive CIK from {hit_id}")

        folder = f"{self.archives_url}/{cik}/{accession.replace('-', '')}"
        response = self.session.get(f"{folder}/{accession}-index.json", timeout=self.timeout)
        if not response.ok:
            raise DocumentFetchError(f"Index lookup failed with HTTP {response.status_code} for {accession}")

        try:
            items = response.json()['directory']['item']
        except (ValueError, KeyError, TypeError) as e:
            raise DocumentFetchError(f"Unexpected index shape for {accession}") from e

        # A single-document filing returns an object rather than a list
        if isinstance(items, dict):
            items = [items]

        for item in items:
            name = item.get('name', '')
            if (
                name.endswith('.xml')
                and item.get('type') not in ('GRAPHIC', 'XSLT')
                and not name.startswith('xsl')
            ):
                return f"{folder}/{name}"

        raise DocumentFetchError(f"No XML document listed for {accession}")

    def fetch_document(self, url: str) -> str:
        """Fetch raw document text."""
        response = self.session.get(url, timeout=self.timeout)
        if not response.ok:
            raise DocumentFetchError(f"Document fetch failed with HTTP {response.status_code}: {url}")
        return response.text

    # ---------- Batch ----------

    def process_filing(self, hit_id: str) -> List[TransactionRecord]:
        """Resolve, fetch and parse one filing."""
        url = self.resolve_document_url(hit_id)
        xml = self.fetch_document(url)
        accession = hit_id.split(':', 1)[0]
        return self.parser.parse(xml, accession_number=accession)

    def _process_filing_safely(self, hit_id: str) -> List[TransactionRecord]:
        try:
            records = self.process_filing(hit_id)
        except Exception as e:
            logger.warning("Skipping filing", hit_id=hit_id, error=str(e))
            metrics.record_filing_processed('failed')
            return []
        metrics.record_filing_processed('ok')
        return records

    def fetch_transactions(self, lookback_days: int = 1, today: Optional[date] = None) -> List[TransactionRecord]:
        """Fetch and parse every Form 4 filed within the lookback window.

        Args:
            lookback_days: Calendar days to search (1 = yesterday only)
            today: Reference date, defaults to today

        Returns:
            Transaction records from all filings that could be processed,
            in search-hit order

        Raises:
            FilingSourceError: when the search request itself fails
        """
        hit_ids = self.search_filings(lookback_days, today)
        if not hit_ids:
            return []

        with ThreadPoolExecutor(max_workers=self.max_concurrent_fetches) as executor:
            batches = list(executor.map(self._process_filing_safely, hit_ids))

        records = [record for batch in batches for record in batch]
        for record in records:
            metrics.record_transaction_ingested(record.transaction_code)

        logger.info(
            "Form 4 ingestion complete",
            lookback_days=lookback_days,
            filings=len(hit_ids),
            transactions=len(records)
        )
        return records
