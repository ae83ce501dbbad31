####################################################################################################
# surfdemons/test/util.py
# Tests for the surfdemons library's util module.

import unittest, os, logging, pimms
import numpy      as np
import pyrsistent as pyr
import surfdemons as sd

class TestSurfdemonsUtil(unittest.TestCase):

    def test_config(self):
        from surfdemons.util import config
        # the defaults (unless someone has an rc-file or environment variables set)
        for k in ('demons_iterations', 'demons_step', 'demons_lambda', 'smooth_gradient',
                  'smooth_update', 'sanitize_threshold', 'float_precision',
                  'correspondence_workers', 'convergence_tolerance', 'convergence_iterations',
                  'depth_potential_alpha'):
            self.assertIn(k, config.keys())
        self.assertEqual(len(config), len(list(config.keys())))
        # environment variables override defaults
        env = 'SURFDEMONS_DEMONS_STEP'
        old = os.environ.get(env)
        try:
            os.environ[env] = '0.25'
            config.reset('demons_step')
            self.assertEqual(config['demons_step'], 0.25)
            # invalid values fall back to the default
            os.environ[env] = '"not a number"'
            config.reset('demons_step')
            with self.assertWarns(UserWarning):
                self.assertEqual(config['demons_step'], 0.1)
        finally:
            if old is None: del os.environ[env]
            else: os.environ[env] = old
            config.reset('demons_step')
        # direct sets are filtered
        old = config['float_precision']
        try:
            config['float_precision'] = 'single'
            self.assertEqual(config['float_precision'], 'float32')
            with self.assertRaises(ValueError):
                config['float_precision'] = 'float16'
            with self.assertRaises(ValueError):
                config['not_a_config_item'] = 10
        finally:
            config['float_precision'] = old
        with self.assertRaises(KeyError):
            config['not_a_config_item']

    def test_command_parser(self):
        from surfdemons.util import CommandLineParser
        parser = CommandLineParser(
            [('v', 'verbose', 'verbose', False),
             ('c', 'clobber', 'clobber', False),
             ('o', 'output',  'output',  None),
             (None, 'step',   'step',    '0.1')])
        (args, opts) = parser(['-vc', 'src.gii', '--step=0.2', '-oout.gii', 'trg.gii'])
        self.assertEqual(args, ['src.gii', 'trg.gii'])
        self.assertEqual(opts, {'verbose':True, 'clobber':True, 'output':'out.gii', 'step':'0.2'})
        (args, opts) = parser(['a', '--output', 'x.csv', 'b'])
        self.assertEqual(args, ['a', 'b'])
        self.assertEqual(opts['output'], 'x.csv')
        self.assertFalse(opts['verbose'])
        self.assertEqual(opts['step'], '0.1')
        # after --, nothing is parsed as an option
        (args, opts) = parser(['--', '-v', 'a'])
        self.assertEqual(args, ['-v', 'a'])
        self.assertFalse(opts['verbose'])
        # errors
        with self.assertRaises(ValueError): parser(['-x'])
        with self.assertRaises(ValueError): parser(['--xyz'])
        with self.assertRaises(ValueError): parser(['-o'])
        with self.assertRaises(ValueError): parser(['--verbose=1'])
        (args, opts) = parser(['-vo', 'y.gii', '-', 'a'])
        self.assertEqual((args, opts['output'], opts['verbose']), (['-', 'a'], 'y.gii', True))
        with self.assertRaises(ValueError): CommandLineParser([('a', 'b')])

    def test_zdivide(self):
        from surfdemons.util import zdivide
        r = zdivide([1.0, 2.0, 3.0], [2.0, 0.0, 4.0])
        self.assertTrue(np.array_equal(r, [0.5, 0.0, 0.75]))
        r = zdivide([1.0, 2.0], 0, null=np.nan)
        self.assertTrue(np.all(np.isnan(r)))

    def test_meta_data(self):
        m = sd.mesh([[0],[1],[2]], np.eye(3))
        self.assertEqual(len(m.meta_data), 0)
        m2 = m.with_meta(source_filename='x.gii')
        self.assertEqual(m2.meta('source_filename'), 'x.gii')
        self.assertIsNone(m.meta('source_filename'))
        self.assertEqual(m2.meta('missing', 10), 10)
        self.assertIs(m.with_meta(), m)

    def test_errors(self):
        from surfdemons.util import (InputValidationError, SurfaceIOError, SolveFailure,
                                     RegistrationCancelled)
        self.assertTrue(issubclass(InputValidationError, ValueError))
        self.assertTrue(issubclass(SurfaceIOError, IOError))
        self.assertTrue(issubclass(SolveFailure, RuntimeError))
        self.assertTrue(issubclass(RegistrationCancelled, RuntimeError))

if __name__ == '__main__':
    unittest.main()
