"""
Tests for the command-line entry point.
"""
import json

import pytest

from jobingest.__main__ import main
from helpers import FIXTURES


def test_cron(capsys):
    assert main(['cron', '7']) == 0
    assert capsys.readouterr().out.strip() == '0,7,14,21,28,35,42,49,56 * * * *'


def test_parse_feed(capsys):
    assert main(['parse', 'rss', str(FIXTURES / 'rss_two_items.xml')]) == 0
    jobs = json.loads(capsys.readouterr().out)
    assert [job['title'] for job in jobs] == ['Backend Developer', 'Part-time Customer Support Agent']
    assert jobs[0]['company'] == 'Acme S.p.A.'


def test_parse_error_exit_code(tmp_path, capsys):
    document = tmp_path / 'catalog.xml'
    document.write_text('<?xml version="1.0"?><catalog><product/></catalog>', encoding='utf-8')
    assert main(['parse', 'partner-xml', str(document)]) == 1
    assert 'parse-error' in capsys.readouterr().err


def test_scrape_inactive_source(tmp_path, capsys):
    sources = tmp_path / 'sources.json'
    sources.write_text(json.dumps([{
        'id': 'acme',
        'name': 'Acme',
        'url': 'https://careers.acme.example/feed.rss',
        'kind': 'xml-feed',
        'is_active': False,
    }]), encoding='utf-8')

    assert main(['scrape', 'acme', '--sources', str(sources)]) == 1
    error = json.loads(capsys.readouterr().out)
    assert error['kind'] == 'inactive'
    assert error['source_id'] == 'acme'


def test_scrape_needs_target(tmp_path):
    sources = tmp_path / 'sources.json'
    sources.write_text('[]', encoding='utf-8')
    with pytest.raises(SystemExit):
        main(['scrape', '--sources', str(sources)])


def test_unknown_family_rejected():
    with pytest.raises(SystemExit):
        main(['parse', 'html-monster', 'page.html'])
