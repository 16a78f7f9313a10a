"""Built-in finders."""

from crawlkit.runnable import Finder

GENERIC_ANCHORS = """\
function genericAnchors(delay) {
  var timeoutDelay = Math.max(0, parseInt(delay, 10) || 0);

  function extractHref(a) {
    return a.getAttribute('href');
  }

  window.setTimeout(function findAnchors() {
    var anchors = document.querySelectorAll('a');
    var urls = Array.prototype.slice.call(anchors).map(extractHref);
    window.crawlkitCallback(null, urls);
  }, timeoutDelay);
}"""


class GenericAnchorsFinder(Finder):
    """Collects the ``href`` of every anchor on the page.

    An optional first parameter delays the lookup by that many ms, for pages
    that add anchors after load:

        crawler.set_finder(GenericAnchorsFinder(), 500)

    Anchors without ``href`` report null and are skipped by the crawler.
    """

    def get_runnable(self) -> str:
        return GENERIC_ANCHORS
