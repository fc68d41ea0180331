"""Job ids and two-tier deduplication."""
from job_digest.job_identity import (
    JobDeduplicator,
    generate_job_id,
    normalize_text,
    normalize_url,
)


def test_normalize_url_drops_query_and_fragment():
    assert (
        normalize_url("https://www.LinkedIn.com/jobs/view/123?trk=abc&refId=9#top")
        == "https://www.linkedin.com/jobs/view/123"
    )
    assert normalize_url("") == ""
    assert normalize_url("Unknown URL") == ""
    assert normalize_url("careers.acme.com/jobs/7") == "careers.acme.com/jobs/7"


def test_id_is_stable_across_tracking_parameters():
    a = generate_job_id("Python Dev", "Acme", "https://linkedin.com/jobs/view/123?trk=email")
    b = generate_job_id("Senior Python Developer", "ACME Inc", "https://linkedin.com/jobs/view/123")
    assert a == b
    assert a.startswith("job_url_")


def test_id_without_url_uses_normalized_title_and_company():
    a = generate_job_id("  Data   Engineer ", "Globex", None)
    b = generate_job_id("data engineer", "GLOBEX", "")
    assert a == b
    assert a.startswith("job_tc_")
    assert a != generate_job_id("Data Engineer", "Initech", None)


def test_normalize_text():
    assert normalize_text("  Senior\tPython  Dev ") == "senior python dev"
    assert normalize_text(None) == ""


class FakeStore:
    def __init__(self, ids=(), similar=()):
        self.ids = set(ids)
        self.similar = list(similar)
        self.similar_calls = 0

    def exists(self, job_id):
        return job_id in self.ids

    def find_similar(self, title, company, apply_url=""):
        self.similar_calls += 1
        return self.similar


class Job:
    def __init__(self, id, title="Dev", company="Acme", apply_url=""):
        self.id = id
        self.title = title
        self.company = company
        self.apply_url = apply_url


def test_exact_id_match_short_circuits():
    store = FakeStore(ids={"job_url_1"})
    outcome = JobDeduplicator(store).check(Job("job_url_1"))
    assert outcome.is_duplicate
    assert outcome.tier == "id"
    assert store.similar_calls == 0


def test_similar_posting_is_duplicate():
    outcome = JobDeduplicator(FakeStore(similar=[object()])).check(Job("job_url_2"))
    assert outcome.is_duplicate
    assert outcome.tier == "similar"


def test_new_posting():
    outcome = JobDeduplicator(FakeStore()).check(Job("job_url_3"))
    assert not outcome.is_duplicate
    assert outcome.tier is None
