import pytest

from contract_finder.errors import JobStateError
from contract_finder.schemas.search import ContractCandidate, SearchRequest
from contract_finder.services import job_store


def _request(**overrides) -> SearchRequest:
    return SearchRequest(keywords=("contract",), **overrides)


def _candidate(cid="c1") -> ContractCandidate:
    return ContractCandidate(id=cid, name="MSA", source="mail")


@pytest.fixture
def db(test_db):
    session = test_db()
    yield session
    session.close()


class TestJobStore:
    def test_create_and_read_back(self, db, user):
        job = job_store.create_job(db, user.id, "Q1", _request(source="MAIL"))
        assert job.status == job_store.CREATED
        assert job.processed is False
        assert job_store.load_request(job).keywords == ("contract",)
        assert job_store.get_job(db, job.id, user.id).id == job.id

    def test_owner_scoping(self, db, user, other_user):
        job = job_store.create_job(db, user.id, "Mine", _request())
        assert job_store.get_job(db, job.id, other_user.id) is None
        assert job_store.list_jobs(db, other_user.id) == []
        with pytest.raises(LookupError):
            job_store.update_job(db, job.id, other_user.id, status=job_store.PROCESSING)

    def test_list_newest_first(self, db, user):
        first = job_store.create_job(db, user.id, "first", _request())
        second = job_store.create_job(db, user.id, "second", _request())
        first.created_at = "2024-01-01T00:00:00Z"
        second.created_at = "2024-02-01T00:00:00Z"
        db.commit()
        assert [j.description for j in job_store.list_jobs(db, user.id)] == ["second", "first"]

    def test_completion_stores_results(self, db, user):
        job = job_store.create_job(db, user.id, "Q1", _request())
        job_store.update_job(db, job.id, user.id, status=job_store.PROCESSING)
        job = job_store.update_job(
            db, job.id, user.id,
            status=job_store.COMPLETED,
            results=job_store.dump_candidates([_candidate()]),
            result_count=1,
            processed=True,
        )
        assert job.status == job_store.COMPLETED
        assert job.error_message is None
        assert job_store.load_candidates(job.results)[0]["id"] == "c1"

    def test_failure_clears_results(self, db, user):
        job = job_store.create_job(db, user.id, "Q1", _request())
        job = job_store.update_job(db, job.id, user.id, status=job_store.FAILED, error_message="boom")
        assert job.status == job_store.FAILED
        assert job.results is None
        assert job.result_count == 0

    def test_failure_needs_message(self, db, user):
        job = job_store.create_job(db, user.id, "Q1", _request())
        with pytest.raises(ValueError):
            job_store.update_job(db, job.id, user.id, status=job_store.FAILED)

    @pytest.mark.parametrize("terminal", [job_store.COMPLETED, job_store.FAILED])
    def test_terminal_status_is_final(self, db, user, terminal):
        job = job_store.create_job(db, user.id, "Q1", _request())
        job_store.update_job(db, job.id, user.id, status=job_store.PROCESSING)
        if terminal == job_store.COMPLETED:
            job_store.update_job(db, job.id, user.id, status=terminal, results="[]")
        else:
            job_store.update_job(db, job.id, user.id, status=terminal, error_message="x")

        for status in (job_store.PROCESSING, job_store.COMPLETED, job_store.FAILED):
            with pytest.raises(JobStateError):
                job_store.update_job(db, job.id, user.id, status=status, results="[]", error_message="y")
        with pytest.raises(JobStateError):
            job_store.update_job(db, job.id, user.id, poll_failures=3)
        assert job_store.get_job(db, job.id, user.id).status == terminal

    def test_created_cannot_skip_to_completed(self, db, user):
        job = job_store.create_job(db, user.id, "Q1", _request())
        with pytest.raises(JobStateError):
            job_store.update_job(db, job.id, user.id, status=job_store.COMPLETED, results="[]")

    def test_compare_and_set_detects_concurrent_change(self, db, test_db, user):
        job = job_store.create_job(db, user.id, "Q1", _request())
        job_store.update_job(db, job.id, user.id, status=job_store.PROCESSING)

        # A second session finishes the job between our read and our write.
        stale = job_store.get_job(db, job.id, user.id)
        with test_db() as other:
            job_store.update_job(other, job.id, user.id, status=job_store.FAILED, error_message="export failed")

        assert stale.status == job_store.PROCESSING
        with pytest.raises(JobStateError):
            job_store.update_job(db, job.id, user.id, status=job_store.COMPLETED, results="[]")

    def test_unknown_fields_rejected(self, db, user):
        job = job_store.create_job(db, user.id, "Q1", _request())
        with pytest.raises(ValueError):
            job_store.update_job(db, job.id, user.id, user_id="someone-else")

    def test_cache_results_only_once(self, db, user):
        job = job_store.create_job(db, user.id, "Q1", _request(mode="BULK_EXPORT"))
        job_store.update_job(db, job.id, user.id, status=job_store.PROCESSING)
        job_store.update_job(db, job.id, user.id, status=job_store.COMPLETED, results="[]")

        job = job_store.cache_results(db, job.id, user.id, [_candidate("a")])
        assert job.processed is True
        job = job_store.cache_results(db, job.id, user.id, [_candidate("b")])
        assert [c["id"] for c in job_store.load_candidates(job.results)] == ["a"]
