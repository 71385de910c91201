#!/usr/bin/env python3
"""
End-to-end properties of a full reconciliation run.

Each test drives Reconciler.run against the in-memory identity store, which
keeps its state between runs the way the real store does.
"""

import unittest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fakes import FakeGoogleDirectory, FakeIdentityStore
from sso_sync.reconciler import Reconciler


class TestSyncProperties(unittest.TestCase):

    def setUp(self):
        self.source = FakeGoogleDirectory()
        self.store = FakeIdentityStore()

    def _run(self, sync_config=None):
        self.store.calls = []
        reconciler = Reconciler(self.source, self.store, sync_config or {})
        return reconciler.run('', '')

    def _populate(self):
        self.source.add_user('a@x.com')
        self.source.add_user('b@x.com')
        self.source.add_user('c@x.com', suspended=True)
        self.source.add_group('Eng', members=['a@x.com', 'b@x.com', 'c@x.com'])
        self.source.add_group('Ops', members=['b@x.com'])
        self.store.seed_user('gone@x.com')
        self.source.add_deleted_user('gone@x.com')
        self.store.seed_group('Legacy')

    def test_second_run_issues_no_mutations(self):
        self._populate()

        first = self._run()
        self.assertGreater(first.mutations, 0)

        second = self._run()
        self.assertEqual(self.store.calls, [])
        self.assertEqual(second.mutations, 0)

    def test_converges_to_google(self):
        self._populate()

        self._run()

        self.assertEqual(self.store.usernames(), {'a@x.com', 'b@x.com'})
        self.assertEqual(self.store.group_names(), {'Eng', 'Ops'})
        self.assertEqual(self.store.members_of('Eng'), ['a@x.com', 'b@x.com'])
        self.assertEqual(self.store.members_of('Ops'), ['b@x.com'])

    def test_ignored_names_never_mutated(self):
        self.source.add_user('robot@x.com')
        self.store.seed_user('bot@x.com')
        self.source.add_user('bot@x.com', suspended=True)
        self.source.add_group('Private', email='private@x.com')
        self.store.seed_group('Shadow')
        config = {
            'ignore_users': ['robot@x.com', 'bot@x.com'],
            'ignore_groups': ['private@x.com', 'Shadow'],
            'protect_ignored_groups': True,
        }

        self._run(config)

        self.assertEqual(self.store.calls, [])

    def test_suspension_deletes_exactly_once(self):
        self.source.add_user('a@x.com')
        self._run()
        self.assertIn('a@x.com', self.store.usernames())

        self.source.users[0].suspended = True
        self._run()
        self.assertEqual(self.store.mutations('delete_user'), [('delete_user', 'a@x.com')])

        self._run()
        self.assertEqual(self.store.calls, [])

    def test_never_created_suspended_user_causes_nothing(self):
        self.source.add_user('a@x.com', suspended=True)

        self._run()

        self.assertEqual(self.store.calls, [])

    def test_single_new_user_creates_once(self):
        self.source.add_user('a@x.com')
        reconciler = Reconciler(self.source, self.store)

        result = reconciler.reconcile_users('')

        self.assertEqual(self.store.mutations('create_user'), [('create_user', 'a@x.com')])
        self.assertIn('a@x.com', result.by_username)

    def test_existing_group_gains_one_member(self):
        a = self.store.seed_user('a@x.com')
        self.store.seed_user('b@x.com')
        eng = self.store.seed_group('Eng')
        self.store.seed_membership(eng, a)
        self.source.add_user('a@x.com')
        self.source.add_user('b@x.com')
        self.source.add_group('Eng', members=['a@x.com', 'b@x.com'])

        self._run()

        self.assertEqual(self.store.mutations('remove_membership'), [])
        self.assertEqual(self.store.mutations('add_membership'), [('add_membership', 'Eng', 'b@x.com')])

    def test_tombstoned_user_deleted_after_group_processing(self):
        self.store.seed_user('t@x.com')
        self.source.add_deleted_user('t@x.com')
        self.source.add_group('Eng', members=['t@x.com'])

        self._run()

        self.assertEqual(self.store.mutations('delete_user'), [('delete_user', 't@x.com')])
        # Still a valid member while groups are reconciled in the same run
        operations = [c[0] for c in self.store.calls]
        self.assertLess(operations.index('add_membership'), operations.index('delete_user'))
        self.assertEqual(operations[-1], 'delete_user')


if __name__ == '__main__':
    unittest.main()
