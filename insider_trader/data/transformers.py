"""Data transformation utilities.
Parses raw Form 4 XML documents into normalized transaction records."""
import math
from dataclasses import dataclass
from datetime import date
from typing import List, Optional
from bs4 import BeautifulSoup
from insider_trader.utils.constants import TRANSACTION_PURCHASE, VALID_TRANSACTION_CODES

@dataclass(frozen=True)
class TransactionRecord:
    """One disclosed insider trade. Immutable once parsed."""
    ticker: str
    insider_name: str
    insider_role: str
    transaction_date: date
    transaction_code: str
    shares: float
    price: float
    accession_number: Optional[str] = None

    @property
    def transaction_value(self) -> float:
        return self.shares * self.price

    @property
    def is_purchase(self) -> bool:
        return self.transaction_code == TRANSACTION_PURCHASE

class Form4Parser:
    """Extracts transaction records from SEC Form 4 ownership documents.

    Tag lookups go through BeautifulSoup's html.parser, which lower-cases
    element names, so every tag below is written in lower case.
    """

    def __init__(self, valid_codes=VALID_TRANSACTION_CODES):
        self.valid_codes = frozenset(valid_codes)

    def parse(self, xml: str, accession_number: Optional[str] = None) -> List[TransactionRecord]:
        """Parse a Form 4 document into zero or more transaction records.

        Args:
            xml: Raw document text
            accession_number: Filing accession number, kept for traceability

        Returns:
            One record per nonDerivativeTransaction with a recognized code
        """
        soup = BeautifulSoup(xml, 'html.parser')

        ticker = (self._nested_text(soup, 'issuer', 'issuertradingsymbol') or '').upper()
        owner = soup.find('reportingowner')
        insider_name = self._nested_text(owner, 'reportingownerid', 'rptownername') or 'Unknown'
        insider_role = self._derive_role(owner)

        records = []
        for tx in soup.find_all('nonderivativetransaction'):
            code = self._text(tx.find('transactioncode'))
            if not code or code not in self.valid_codes:
                continue

            transaction_date = self._parse_date(self._nested_text(tx, 'transactiondate', 'value'))
            shares = self._parse_number(self._nested_text(tx, 'transactionshares', 'value'))
            price = self._parse_number(self._nested_text(tx, 'transactionpricepershare', 'value'))

            if not ticker or transaction_date is None or shares is None:
                continue

            records.append(TransactionRecord(
                ticker=ticker,
                insider_name=insider_name,
                insider_role=insider_role,
                transaction_date=transaction_date,
                transaction_code=code,
                shares=shares,
                price=price if price is not None else 0.0,
                accession_number=accession_number
            ))

        return records

    def _derive_role(self, owner) -> str:
        """Officer title, then director, then 10% owner, then other."""
        if owner is None:
            return 'Other'
        rel = owner.find('reportingownerrelationship')
        if rel is None:
            return 'Other'
        if self._is_flag_set(rel.find('isofficer')):
            return self._text(rel.find('officertitle')) or 'Officer'
        if self._is_flag_set(rel.find('isdirector')):
            return 'Director'
        if self._is_flag_set(rel.find('istenpercentowner')):
            return '10% Owner'
        return 'Other'

    @staticmethod
    def _text(node) -> Optional[str]:
        if node is None:
            return None
        value = node.get_text(strip=True)
        return value or None

    def _nested_text(self, node, outer: str, inner: str) -> Optional[str]:
        if node is None:
            return None
        block = node.find(outer)
        if block is None:
            return None
        return self._text(block.find(inner))

    def _is_flag_set(self, node) -> bool:
        return (self._text(node) or '').lower() in ('1', 'true')

    @staticmethod
    def _parse_date(value: Optional[str]) -> Optional[date]:
        # Dates can carry a timezone suffix, e.g. 2024-01-02-05:00
        if not value:
            return None
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None

    @staticmethod
    def _parse_number(value: Optional[str]) -> Optional[float]:
        if not value:
            return None
        try:
            number = float(value.replace(',', ''))
        except ValueError:
            return None
        if math.isnan(number):
            return None
        return number
