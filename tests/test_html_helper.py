from core.sandbox.html_helper import cheerio

HTML = '''
<html><body>
  <div class="list">
    <div class="manga-item" data-id="1"><a class="title" href="/m/1">One</a></div>
    <div class="manga-item hot" data-id="2"><a class="title" href="/m/2">Two</a></div>
  </div>
  <p id="footer">  end  </p>
</body></html>
'''


def test_select_text_and_attributes():
    q = cheerio.load(HTML)

    items = q('div.manga-item')
    assert items.length == 2
    assert [item.find('a.title').text() for item in items] == ['One', 'Two']
    assert items.eq(1).find('a').attr('href') == '/m/2'
    assert items.first().data('id') == '1'
    assert q('#footer').text() == 'end'
    assert q('.missing').attr('href') == ''


def test_map_filter_and_classes():
    q = cheerio.load(HTML)
    items = q('div.manga-item')

    ids = items.map(lambda i, el: el.attr('data-id')).get()
    assert ids == ['1', '2']
    assert items.filter('.hot').length == 1
    assert items.eq(1).has_class('hot')
    assert items.eq(0).add_class('seen').attr('class') == 'manga-item seen'


def test_context_and_traversal():
    q = cheerio.load(HTML)

    titles = q('a', '.list')
    assert titles.length == 2
    assert titles.first().parent().is_('.manga-item')
    assert q('.manga-item').first().next().data('id') == '2'
    assert q('.list').children().length == 2
    assert 'href="/m/1"' in q('.manga-item').first().html()


def test_fragment_and_each_break():
    q = cheerio.load(HTML)
    fragment = q('<span class="x">hi</span>')
    assert fragment.text() == 'hi'

    seen = []
    q('div.manga-item').each(lambda i, el: seen.append(i) or False)
    assert seen == [0]
