import json

from storefront_crawler.ui.cli import build_arg_parser, load_config, run_cli


def test_flags_override_the_config_file(tmp_path):
    path = tmp_path / "INPUT.json"
    path.write_text(json.dumps({
        "startUrls": ["https://shop.example/sitemap.xml"],
        "storefrontAccessToken": "from-file",
        "batchSize": 5,
    }), encoding="utf-8")
    args = build_arg_parser().parse_args([
        "--config", str(path),
        "--batch-size", "20",
        "--output", str(tmp_path / "out.csv"),
        "--exporter", "storefront_crawler.export.csv_exporter:CSVExporter",
    ])
    cfg = load_config(args)
    assert cfg.storefront_access_token == "from-file"
    assert cfg.batch_size == 20
    assert cfg.exporter.endswith(":CSVExporter")
    assert cfg.start_urls == ["https://shop.example/sitemap.xml"]


def test_run_cli_reports_configuration_errors(monkeypatch, tmp_path):
    monkeypatch.delenv("STOREFRONT_ACCESS_TOKEN", raising=False)
    assert run_cli(["https://shop.example/sitemap.xml", "--output", str(tmp_path / "out.jsonl")]) == 2


def test_run_cli_writes_products(fake_sitemaps, fake_storefront, tmp_path):
    output = tmp_path / "out.jsonl"
    code = run_cli([
        "https://shop.example/sitemap.xml",
        "--access-token", "token-123",
        "--flush-interval-ms", "10",
        "--output", str(output),
        "--state-dir", str(tmp_path / "state"),
    ])
    assert code == 0
    ids = sorted(json.loads(line)["id"] for line in output.read_text(encoding="utf-8").splitlines())
    assert ids == ["123", "456"]
