"""
Shared fixtures: scripted providers, deterministic config and recorded sleeps.
"""

from datetime import date
from typing import List, Optional

import pytest

from core.extraction_config import ExtractionConfig
from core.invoker import ResilientInvoker
from core.quota import ConcurrencyGate, QuotaBook
from core.sites import load_site_profiles
from providers.base import ExtractionProvider, ExtractionRequest
from providers.confidence import ConstantConfidence


class ScriptedProvider(ExtractionProvider):
    """Provider that replays a script of responses (str) or failures (Exception)."""

    def __init__(self, provider_id: str = 'fake', responses: Optional[List] = None, priority: int = 50,
                 is_available: bool = True, confidence_value: float = 0.5, capabilities=None):
        super().__init__(provider_id, priority=priority, capabilities=capabilities,
                         scorer=ConstantConfidence(confidence_value))
        self.responses = list(responses or [])
        self.is_available = is_available
        self.requests: List[ExtractionRequest] = []
        self.availability_checks = 0

    def available(self) -> bool:
        self.availability_checks += 1
        return self.is_available

    async def complete(self, request: ExtractionRequest) -> str:
        self.requests.append(request)
        if not self.responses:
            return '[]'
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class FakeClock:
    def __init__(self, today: date):
        self.today = today

    def __call__(self) -> date:
        return self.today


@pytest.fixture
def make_provider():
    return ScriptedProvider


@pytest.fixture
def clock():
    return FakeClock(date(2025, 3, 1))


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(seconds: float):
        sleeps.append(seconds)
    return _sleep


@pytest.fixture
def config():
    return ExtractionConfig(
        provider='',
        api_keys={'openai': None, 'gemini': None, 'anthropic': None, 'openrouter': None},
        max_chunk_tokens=4000,
        chars_per_token=4,
        daily_quota=30,
        daily_quota_overrides={},
        max_concurrency=1,
        call_interval=0.0,
        retry_base_delay=30.0,
        retry_multiplier=1.5,
        retry_max_delay=300.0,
        max_attempts=3,
        detail_parallelism=1,
        detail_quota_reserve=5,
        enable_fallback=True,
        enable_provider_fallback=True,
    )


@pytest.fixture
def quota_book(clock):
    return QuotaBook(default_ceiling=30, clock=clock)


@pytest.fixture
def invoker(quota_book, fake_sleep):
    return ResilientInvoker(
        quota_book,
        ConcurrencyGate(1),
        call_interval=0.0,
        base_delay=30.0,
        multiplier=1.5,
        max_delay=300.0,
        max_attempts=3,
        sleep=fake_sleep,
    )


@pytest.fixture
def profiles():
    return load_site_profiles()


def _card(idx: int, title: str, company: str, location: str) -> str:
    return f"""
    <div class="item_recruit">
      <h2 class="job_tit"><a href="/zf_user/jobs/relay/view?rec_idx={idx}">{title}</a></h2>
      <div class="corp_name">{company}</div>
      <div class="job_condition"><span>{location}</span><span>3 years</span></div>
    </div>
    """


@pytest.fixture
def saramin_html():
    cards = "".join([
        _card(1, "Backend Developer", "Acme Corp", "Seoul"),
        _card(2, "Frontend Developer", "Beta Labs", "Busan"),
        _card(3, "Data Engineer", "Gamma Inc", "Incheon"),
    ])
    return f"""
    <html>
      <head><script>var tracking = 1;</script><style>.x {{ color: red; }}</style></head>
      <body>
        <nav>Home | Jobs | Companies</nav>
        <div class="list">{cards}</div>
        <div class="banner">Premium membership sale</div>
        <div style="display: none">secret hidden block</div>
        <div aria-hidden="true">screen reader junk</div>
        <!-- tracking comment -->
        <footer>Copyright</footer>
      </body>
    </html>
    """

