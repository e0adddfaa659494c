"""
API client for the AlQuran Cloud text service.
"""

import requests
import logging
from typing import Dict, List, Optional
from dataclasses import dataclass
from urllib.parse import urljoin

from .exceptions import QuranDataError
from .normalization import is_annotation_token, normalize_arabic, tokenize


@dataclass(frozen=True)
class Surah:
    """Surah metadata from the AlQuran API."""
    number: int
    name: str
    english_name: str
    english_name_translation: str
    number_of_ayahs: int
    revelation_type: str


@dataclass(frozen=True)
class Ayah:
    """A single ayah with its recitation audio, translation and tafsir."""
    number: int
    text: str
    number_in_surah: int
    juz: Optional[int] = None
    audio: Optional[str] = None
    translation: Optional[str] = None
    tafsir: Optional[str] = None


# Uthmani text, Mishary Alafasy audio, Sahih International, Tafsir Al-Muyassar
SURAH_EDITIONS = ("quran-uthmani", "ar.alafasy", "en.sahih", "ar.muyassar")

BASMALAH_WORD_COUNT = 4
# Al-Fatiha counts the Basmalah as its first ayah; At-Tawba has none.
SURAHS_WITHOUT_BASMALAH_PREFIX = (1, 9)


class AlQuranAPIClient:
    """Client for AlQuran Cloud API."""

    BASE_URL = "https://api.alquran.cloud/v1/"

    def __init__(self, base_url: Optional[str] = None, timeout: float = 10):
        self.base_url = base_url or self.BASE_URL
        self.timeout = timeout
        self.session = requests.Session()
        self.logger = logging.getLogger(__name__)
        self._surah_list: Optional[List[Surah]] = None
        self._surah_cache: Dict[int, List[Ayah]] = {}

    def fetch_surah_list(self) -> List[Surah]:
        """
        Get the list of all 114 surahs.

        Returns:
            List of Surah objects in mushaf order

        Raises:
            QuranDataError: If the API cannot be reached or answers with an error
        """
        if self._surah_list is not None:
            return self._surah_list

        data = self._get_data("surah")
        try:
            surahs = [
                Surah(
                    number=item["number"],
                    name=item["name"],
                    english_name=item["englishName"],
                    english_name_translation=item["englishNameTranslation"],
                    number_of_ayahs=item["numberOfAyahs"],
                    revelation_type=item["revelationType"],
                )
                for item in data
            ]
        except (KeyError, TypeError) as e:
            self.logger.error(f"Unexpected surah list payload: {e}")
            raise QuranDataError(f"Malformed surah list: {e}")

        self._surah_list = surahs
        return surahs

    def fetch_surah_details(self, surah_number: int) -> List[Ayah]:
        """
        Get every ayah of a surah with audio, translation and tafsir.

        Args:
            surah_number: Surah number (1-114)

        Returns:
            List of Ayah objects ordered by position in the surah

        Raises:
            QuranDataError: If the surah number is invalid or the API response is unusable
        """
        if not 1 <= surah_number <= 114:
            raise QuranDataError(f"Surah number out of range: {surah_number}", surah_number=surah_number)

        if surah_number in self._surah_cache:
            return self._surah_cache[surah_number]

        data = self._get_data(f"surah/{surah_number}/editions/{','.join(SURAH_EDITIONS)}")
        if not isinstance(data, list) or len(data) < len(SURAH_EDITIONS):
            raise QuranDataError("Failed to fetch surah details", surah_number=surah_number)

        try:
            quran_data, audio_data, translation_data, tafsir_data = (edition["ayahs"] for edition in data[:4])
            ayahs = []
            for index, item in enumerate(quran_data):
                ayahs.append(Ayah(
                    number=item["number"],
                    text=self._clean_ayah_text(surah_number, item["numberInSurah"], item["text"]),
                    number_in_surah=item["numberInSurah"],
                    juz=item.get("juz"),
                    audio=audio_data[index].get("audio"),
                    translation=translation_data[index].get("text"),
                    tafsir=tafsir_data[index].get("text"),
                ))
        except (KeyError, IndexError, TypeError) as e:
            self.logger.error(f"Unexpected surah details payload for surah {surah_number}: {e}")
            raise QuranDataError(f"Malformed surah details: {e}", surah_number=surah_number)

        self.logger.info(f"Fetched {len(ayahs)} ayahs for surah {surah_number}")
        self._surah_cache[surah_number] = ayahs
        return ayahs

    def _clean_ayah_text(self, surah_number: int, ayah_number: int, text: str) -> str:
        """
        Clean the Uthmani text so it splits into reciteable words:
        1. Remove the Basmalah preamble the API prepends to verse 1.
        2. Drop standalone stop marks (waqf signs).
        """
        words = tokenize(text)

        if ayah_number == 1 and surah_number not in SURAHS_WITHOUT_BASMALAH_PREFIX:
            if len(words) > BASMALAH_WORD_COUNT and normalize_arabic(words[0]).endswith("بسم"):
                self.logger.debug(f"Removing Basmalah from surah {surah_number} ayah 1")
                words = words[BASMALAH_WORD_COUNT:]

        clean_words = [word for word in words if not is_annotation_token(word)]
        if len(clean_words) != len(words):
            self.logger.debug(f"Removed {len(words) - len(clean_words)} stop marks from {surah_number}:{ayah_number}")

        return " ".join(clean_words)

    def _get_data(self, endpoint: str):
        """Make a request to the AlQuran API and return its ``data`` member."""
        url = urljoin(self.base_url, endpoint)
        self.logger.debug(f"Making request to: {url}")

        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            self.logger.error(f"Network error accessing AlQuran API: {e}")
            raise QuranDataError(f"Failed to fetch Quran data: {e}")
        except ValueError as e:
            self.logger.error(f"AlQuran API returned invalid JSON: {e}")
            raise QuranDataError(f"Invalid JSON from Quran API: {e}")

        if payload.get("code") != 200:
            raise QuranDataError(f"API Error: {payload.get('status', 'Unknown error')}")

        return payload["data"]
