from studyhub.db import make_engine, normalize_database_url


class TestDatabaseUrl:
    def test_postgres_schemes_use_psycopg(self):
        assert normalize_database_url("postgres://u:p@db:5432/hub") == "postgresql+psycopg://u:p@db:5432/hub"
        assert normalize_database_url(" postgresql://u:p@db/hub ") == "postgresql+psycopg://u:p@db/hub"

    def test_explicit_driver_and_sqlite_untouched(self):
        assert normalize_database_url("postgresql+psycopg://u:p@db/hub") == "postgresql+psycopg://u:p@db/hub"
        assert normalize_database_url("sqlite:///./studyhub.db") == "sqlite:///./studyhub.db"

    def test_sqlite_engine(self, tmp_path):
        engine = make_engine(f"sqlite:///{tmp_path / 'x.db'}")
        try:
            assert engine.url.get_backend_name() == "sqlite"
        finally:
            engine.dispose()
