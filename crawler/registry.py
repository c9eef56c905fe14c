# crawler/registry.py
from .baku_electronics import BakuElectronicsScraper
from .irshad import IrshadScraper
from .kontakt import KontaktScraper

SCRAPERS = {
    KontaktScraper.code: KontaktScraper,
    IrshadScraper.code: IrshadScraper,
    BakuElectronicsScraper.code: BakuElectronicsScraper,
}
